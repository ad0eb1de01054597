DEFAULT_EXPECTED_DAYS = 30
DEFAULT_PERSIST_TIMEOUT = 10.0
DEFAULT_TEMPLATE = "generic"
