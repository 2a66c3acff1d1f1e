from .store import SQLARecordStore, build_tables  # noqa: F401
