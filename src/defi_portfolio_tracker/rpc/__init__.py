"""Outbound call plumbing: rate limiting, retries, and ERC20 call encoding.

The Ape-backed ``ApeRPCProvider`` lives in ``defi_portfolio_tracker.rpc.provider``
and is imported explicitly so that Ape is only loaded when a live RPC is needed.
"""

from defi_portfolio_tracker.rpc.rate_limiter import RateLimiter
from defi_portfolio_tracker.rpc.retry import RetryConfig, is_transient_http_error, is_transient_rpc_error, with_retry

__all__ = [
    "RateLimiter",
    "RetryConfig",
    "is_transient_http_error",
    "is_transient_rpc_error",
    "with_retry",
]
