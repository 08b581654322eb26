from enum import Enum


class AdminRole(str, Enum):
    owner = "owner"
    admin = "admin"


class UserType(str, Enum):
    admin = "admin"
    staff = "staff"
    # Legacy: customer-app tokens are registered as 'client'
    client = "client"


class Platform(str, Enum):
    ios = "ios"
    android = "android"
    web = "web"


class TokenFormat(str, Enum):
    expo = "EXPO"
    fcm = "FCM"
    apns = "APNS"
    unknown = "UNKNOWN"


class ResolutionSource(str, Enum):
    cache = "CACHE"
    primary = "PRIMARY"
    fallback = "FALLBACK"
    none = "NONE"


class JitterType(str, Enum):
    none = "none"
    full = "full"
    equal = "equal"
    decorrelated = "decorrelated"


class CircuitState(str, Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class MaintenanceJobType(str, Enum):
    full = "full"
    cleanup = "cleanup"
    health = "health"
    analytics = "analytics"


class RetryAction(str, Enum):
    process_queue = "process_queue"
    force_retry = "force_retry"
    clear_retries = "clear_retries"
    clear_all = "clear_all"
