from .datetime_utils import utcnow, to_naive_utc, offset_to_timedelta, format_local_time, describe_time_until
from .timeouts import call_with_timeout, OperationTimeoutError
