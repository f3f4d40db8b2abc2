"""
Redis constants and configuration.
Centralizes TTLs and key prefixes for better visibility and management.
"""

# =============================================================================
# TTL (Time To Live) Constants (in seconds)
# =============================================================================

# Ephemeral payment fingerprints (approved payment snapshots)
PAYMENT_FINGERPRINT_TTL = 3600  # 1 hour


# =============================================================================
# Key Prefixes
# =============================================================================

PREFIX_PAYMENT_FINGERPRINT = "payment:"
PREFIX_PAYMENT_FINGERPRINT_TEMPLATE = "payment:{tenant_id}:{payment_id}"


def get_payment_fingerprint_key(tenant_id: str, payment_id: str) -> str:
    """Cache key for a gateway payment seen for a given store."""
    return PREFIX_PAYMENT_FINGERPRINT_TEMPLATE.format(
        tenant_id=tenant_id, payment_id=payment_id
    )
