from .typing import assert_not_none, qualified_name, unwrap_optional  # noqa: F401
