from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "QuoteDesk",
    "quote": "Quote request",
    "customer": "Customer",
    "supplier": "Supplier",
    "quoter": "Quoter",
    "admin": "Administrator",
    "group": "Supplier group",
}


STATUS_ITEMS: List[Dict[str, str]] = [
    {
        "key": "pending",
        "label": "Pending",
        "description": "Request received and waiting to be routed to a supplier.",
    },
    {
        "key": "in_progress",
        "label": "In progress",
        "description": "A supplier is preparing a priced response.",
    },
    {
        "key": "supplier_quoted",
        "label": "Supplier quoted",
        "description": "The supplier confirmed a priced response; the quoter is reviewing it.",
    },
    {
        "key": "rejected",
        "label": "Not quoted",
        "description": "The request was declined. A new upload puts it back into the workflow.",
    },
    {
        "key": "quoted",
        "label": "Quoted",
        "description": "The final quote was confirmed and returned to the customer.",
    },
    {
        "key": "cancelled",
        "label": "Cancelled",
        "description": "The request was withdrawn.",
    },
]


ROLE_LABELS: Dict[str, str] = {
    "customer": "Customer",
    "supplier": "Supplier",
    "quoter": "Quoter",
    "admin": "Administrator",
}


FILE_TYPE_LABELS: Dict[str, str] = {
    "customer": "Customer request file",
    "supplier": "Supplier quote file",
    "quoter": "Final quote file",
}


ACTION_LABELS: Dict[str, str] = {
    "view": "Open",
    "edit": "Edit details",
    "toggle_urgent": "Mark urgent",
    "upload_customer_file": "Attach request file",
    "upload_supplier_file": "Upload supplier quote",
    "upload_quoter_file": "Upload final quote",
    "confirm_supplier_quote": "Confirm supplier quote",
    "confirm_final_quote": "Confirm final quote",
    "assign_supplier": "Assign supplier",
    "remove_supplier": "Remove supplier",
    "assign_quoter": "Assign quoter",
    "delete_customer_file": "Remove request file",
    "delete_supplier_file": "Remove supplier quote file",
    "delete_quoter_file": "Remove final quote file",
    "reject": "Decline to quote",
    "cancel": "Cancel request",
    "delete": "Delete request",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quote_created": "Quote request created.",
        "quote_updated": "Quote request updated.",
        "quote_deleted": "Quote request deleted.",
        "quote_rejected": "Quote request declined.",
        "quote_cancelled": "Quote request cancelled.",
        "supplier_assigned": "Supplier assigned.",
        "supplier_removed": "Supplier assignment removed.",
        "quoter_assigned": "Quoter assigned.",
        "supplier_quote_confirmed": "Supplier quote confirmed.",
        "final_quote_confirmed": "Final quote confirmed and sent to the customer.",
        "logged_out": "Signed out.",
        "password_reset_requested": "If the address is registered, a reset link is on its way.",
        "password_reset_done": "Password changed. Please sign in with the new password.",
        "group_deleted": "Group deleted.",
        "user_deactivated": "User deactivated.",
    },
    "error": {
        "account_inactive": "This account is disabled.",
        "action_invalid": "Invalid action for this operation.",
        "action_not_allowed_for_status": "This action is not allowed for the current status.",
        "auth_invalid_credentials": "Invalid email or password.",
        "auth_invalid_token": "Your session expired. Please sign in again.",
        "auth_missing_credentials": "Email and password are required.",
        "auth_required": "Authentication required.",
        "confirmation_required": "Please explicitly confirm this action to continue.",
        "conflict": "The request conflicts with a concurrent change. Please retry.",
        "customer_not_owner": "Only the customer who created this request may do that.",
        "email_already_registered": "This email is already registered.",
        "field_not_editable": "You cannot change one or more of the submitted fields.",
        "file_index_invalid": "File index is invalid.",
        "file_not_found": "File not found.",
        "file_too_large": "Each file must be 10 MB or smaller.",
        "file_type_invalid": "Only Excel files (.xlsx, .xls) are accepted.",
        "file_type_not_allowed": "You cannot access this kind of file.",
        "file_type_required": "File type is invalid.",
        "files_required": "Attach at least one Excel file.",
        "group_name_required": "Group name is required.",
        "group_in_use": "Remove the group members before deleting the group.",
        "group_members_must_be_suppliers": "Only active suppliers can be group members.",
        "group_name_taken": "A group with this name already exists.",
        "group_not_found": "Group not found.",
        "invariant_violation": "The quote would end up in an inconsistent state.",
        "no_changes": "No changes were submitted.",
        "not_found": "Not found.",
        "page_invalid": "Page parameters are invalid.",
        "permission_denied": "You do not have permission to perform this action.",
        "price_invalid": "Price is invalid.",
        "quote_not_found": "Quote request not found.",
        "quote_number_conflict": "Could not allocate a quote number. Please retry.",
        "quote_update_conflict": "The quote was changed by someone else. Please retry.",
        "quoter_files_required": "Upload a final quote file before confirming.",
        "quoter_id_required": "Select a quoter.",
        "quoter_invalid": "The selected user is not an active quoter.",
        "rate_limit_exceeded": "Too many requests. Please try again shortly.",
        "reject_reason_required": "Please give a reason for declining.",
        "role_invalid": "Role is invalid.",
        "role_not_allowed": "Your role cannot perform this action.",
        "sort_invalid": "Sort field is invalid.",
        "status_invalid": "Status is invalid.",
        "status_locked": "The request is locked for this action at its current status.",
        "storage_unavailable": "File storage is temporarily unavailable.",
        "supplier_files_required": "Upload a supplier quote file before confirming.",
        "supplier_id_required": "Select a supplier.",
        "supplier_invalid": "The selected user is not an active supplier.",
        "supplier_not_assigned": "This request is not assigned to you.",
        "supplier_quote_locked": "A confirmed supplier quote cannot be removed.",
        "final_quote_present": "A final quote file is already attached; the supplier quote file can no longer be removed.",
        "title_required": "Title is required.",
        "too_many_files": "Upload at most 10 files at once.",
        "unexpected_error": "The operation could not be completed. Please try again shortly.",
        "unknown_role": "Your account has no valid role.",
        "user_already_inactive": "This user is already inactive.",
        "cannot_deactivate_self": "You cannot deactivate your own account.",
        "password_too_short": "Password must be at least 8 characters.",
        "email_invalid": "Email address is invalid.",
        "user_ids_required": "Select at least one supplier.",
        "user_not_found": "User not found.",
        "valid_until_invalid": "Valid-until date is invalid.",
        "validation_error": "The submitted data is invalid.",
    },
    "confirm": {
        "delete_quote": "Delete this quote request and all of its files?",
        "delete_file": "Delete the selected files?",
        "reject_quote": "Decline to quote this request?",
        "remove_supplier": "Remove the supplier assignment?",
        "cancel_quote": "Cancel this quote request?",
        "delete_group": "Delete this supplier group?",
        "deactivate_user": "Deactivate this user?",
    },
}


def status_keys() -> List[str]:
    return [item["key"] for item in STATUS_ITEMS]


def build_status_labels() -> Dict[str, str]:
    return {item["key"]: item["label"] for item in STATUS_ITEMS}


def build_status_descriptions() -> Dict[str, str]:
    return {item["key"]: item["description"] for item in STATUS_ITEMS}


STATUS_LABELS = build_status_labels()
STATUS_DESCRIPTIONS = build_status_descriptions()


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def status_label(status: str | None) -> str:
    key = str(status or "").strip()
    return STATUS_LABELS.get(key, key)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "statuses": STATUS_ITEMS,
        "status_labels": STATUS_LABELS,
        "status_descriptions": STATUS_DESCRIPTIONS,
        "role_labels": ROLE_LABELS,
        "file_type_labels": FILE_TYPE_LABELS,
        "action_labels": ACTION_LABELS,
        "messages": MESSAGES,
    }
