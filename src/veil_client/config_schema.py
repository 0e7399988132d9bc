"""
JSON schemas for configuration validation.
"""

CHAIN_MAP_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^[0-9]+$": {"type": "string"},
    },
    "additionalProperties": False,
}

RETRY_SCHEMA = {
    "type": "object",
    "properties": {
        "max_attempts": {"type": "integer", "minimum": 1},
        "backoff": {"type": "number", "minimum": 0.0},
        "confirmation_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

DELTA_SCHEMA = {
    "type": "object",
    "properties": {
        "minimum": {"type": "integer", "maximum": 0},
        "maximum": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": False,
}

DECRYPTION_SCHEMA = {
    "type": "object",
    "properties": {
        "authorization_ttl": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

NETWORK_SCHEMA = {
    "type": "object",
    "properties": {
        "rpc_urls": CHAIN_MAP_SCHEMA,
        "mock_chains": CHAIN_MAP_SCHEMA,
    },
    "additionalProperties": False,
}

DEPLOYMENTS_SCHEMA = {
    "type": "object",
    "properties": {
        "contracts": {
            "type": "object",
            "patternProperties": {
                "^[0-9]+$": {"type": "string", "pattern": "^0x[0-9a-fA-F]{40}$"},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}

ACTIVITY_SCHEMA = {
    "type": "object",
    "properties": {
        "max_entries": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "veil-client configuration",
    "type": "object",
    "properties": {
        "retry": RETRY_SCHEMA,
        "delta": DELTA_SCHEMA,
        "decryption": DECRYPTION_SCHEMA,
        "network": NETWORK_SCHEMA,
        "deployments": DEPLOYMENTS_SCHEMA,
        "activity": ACTIVITY_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
    "additionalProperties": False,
}
