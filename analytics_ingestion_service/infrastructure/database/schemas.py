# Collection schema and retention policy for stored analytics events
import datetime

RETENTION_POLICY_NAME = "analytics-lifecycle"

HOT_PHASE_AGE = datetime.timedelta(0)
WARM_PHASE_AGE = datetime.timedelta(days=7)
DELETE_PHASE_AGE = datetime.timedelta(days=30)

# Unknown top-level fields are rejected; `properties` is the only open object.
EVENTS_VALIDATOR = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": [
            "_id", "eventId", "userId", "sessionId", "eventType", "timestamp",
            "properties", "metadata", "indexedAt", "processingTimeMs",
        ],
        "additionalProperties": False,
        "properties": {
            "_id": {"bsonType": "string"},
            "eventId": {"bsonType": "string"},
            "userId": {"bsonType": ["string", "int", "long"]},
            "sessionId": {"bsonType": "string"},
            "eventType": {"bsonType": "string"},
            "timestamp": {"bsonType": "string"},
            "properties": {"bsonType": "object"},
            "metadata": {
                "bsonType": "object",
                "required": ["source", "version", "processedAt"],
                "properties": {
                    "source": {"bsonType": "string"},
                    "version": {"bsonType": "string"},
                    "processedAt": {"bsonType": "date"},
                },
            },
            "indexedAt": {"bsonType": "date"},
            "processingTimeMs": {"bsonType": ["int", "long"], "minimum": 0},
        },
    }
}

# (field, direction) pairs for the secondary indexes used by search
EVENTS_INDEXES = [
    ("timestamp", -1),
    ("eventType", 1),
    ("sessionId", 1),
    ("userId", 1),
]


def build_retention_policy() -> dict:
    """
    Lifecycle policy registered next to the events collection.

    The delete phase is enforced by the TTL index on indexedAt; hot and warm
    are recorded for operators and maintenance jobs.
    """
    return {
        "_id": RETENTION_POLICY_NAME,
        "phases": {
            "hot": {
                "min_age_seconds": int(HOT_PHASE_AGE.total_seconds()),
                "actions": {"set_priority": {"priority": 100}},
            },
            "warm": {
                "min_age_seconds": int(WARM_PHASE_AGE.total_seconds()),
                "actions": {"consolidate": {}, "set_priority": {"priority": 50}},
            },
            "delete": {
                "min_age_seconds": int(DELETE_PHASE_AGE.total_seconds()),
                "actions": {"delete": {}},
            },
        },
    }
