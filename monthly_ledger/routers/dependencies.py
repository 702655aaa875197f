# This is a placeholder for a proper authentication dependency.
def get_current_user_id() -> int:
    return 1
