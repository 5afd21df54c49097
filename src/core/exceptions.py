"""
Domain exceptions raised by services and translated to HTTP errors by routers.
"""

from typing import Optional


class NoCapacityError(Exception):
    """No eligible credential left in a token pool (operator must add tokens)"""

    def __init__(self, pool: str):
        self.pool = pool
        super().__init__(f"No active {pool} tokens available. Please contact admin.")


class QuotaExceededError(Exception):
    """Plan quota denied the request"""

    def __init__(self, reason: str, used: int = 0, limit: Optional[int] = None):
        self.reason = reason
        self.used = used
        self.limit = limit
        super().__init__(reason)


class ToolUnavailableError(Exception):
    """Tool not included in plan or under maintenance"""

    def __init__(self, tool: str, reason: str, maintenance: bool = False):
        self.tool = tool
        self.reason = reason
        self.maintenance = maintenance
        super().__init__(reason)


class InvalidTransitionError(Exception):
    """Illegal history status change"""

    def __init__(self, history_id, current: str, new: str):
        self.history_id = history_id
        self.current = current
        self.new = new
        super().__init__(f"History {history_id}: cannot move {current} -> {new}")


class InsufficientCreditsError(Exception):
    """Reseller credit balance too low"""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits: balance {balance}, required {required}")


class InsufficientBalanceError(Exception):
    """Affiliate balance too low for withdrawal"""


class WithdrawalStateError(Exception):
    """Withdrawal is not pending (already processed)"""


class UpstreamError(Exception):
    """Error returned by an external generation API"""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        self.status = status
        self.code = code
        super().__init__(message)

    @property
    def is_credential_error(self) -> bool:
        """Attributable to the credential: auth failure, exhausted key or rate limit"""
        return self.status in (401, 402, 403, 429)

    @property
    def is_transient(self) -> bool:
        """Worth retrying with the same credential"""
        return self.status is None or self.status >= 500
