import pytest
import time
from unittest.mock import MagicMock, AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.token_blacklist import TokenBlacklist, TOKEN_BLACKLIST_PREFIX


@pytest.mark.asyncio
async def test_add_and_lookup(blacklist, fake_redis):
    """Test a blacklisted token is found and another one is not"""
    added = await blacklist.add("token-a", time.time() + 3600)
    assert added is True

    assert await blacklist.is_blacklisted("token-a") is True
    assert await blacklist.is_blacklisted("token-b") is False

    keys = [key async for key in fake_redis.scan_iter(match=f"{TOKEN_BLACKLIST_PREFIX}*")]
    assert len(keys) == 1
    # В Redis хранится только хеш, не сам токен
    assert "token-a" not in keys[0]
    assert keys[0][len(TOKEN_BLACKLIST_PREFIX):].startswith("$2")


@pytest.mark.asyncio
async def test_entry_ttl_matches_token_expiry(blacklist, fake_redis):
    """Test the entry lives as long as the token"""
    await blacklist.add("token-a", time.time() + 600)

    keys = [key async for key in fake_redis.scan_iter(match=f"{TOKEN_BLACKLIST_PREFIX}*")]
    ttl = await fake_redis.ttl(keys[0])
    assert 590 <= ttl <= 600


@pytest.mark.asyncio
async def test_expired_token_not_stored(blacklist, fake_redis):
    """Test an already expired token creates no entry"""
    assert await blacklist.add("token-a", time.time() - 10) is False
    assert await blacklist.add("token-b", time.time()) is False

    assert await fake_redis.dbsize() == 0
    assert await blacklist.is_blacklisted("token-a") is False


@pytest.mark.asyncio
async def test_token_in_its_last_second_is_stored(fake_redis):
    """Test a token with less than a second left is still revoked"""
    now = 1_800_000_000.0
    blacklist = TokenBlacklist(fake_redis, strategy="bcrypt", rounds=4, clock=lambda: now)

    assert await blacklist.add("token-a", now + 0.9) is True
    assert await blacklist.is_blacklisted("token-a") is True

    keys = [key async for key in fake_redis.scan_iter(match=f"{TOKEN_BLACKLIST_PREFIX}*")]
    assert 0 < await fake_redis.pttl(keys[0]) <= 1000


@pytest.mark.asyncio
async def test_long_tokens_are_distinguished(blacklist):
    """Test tokens sharing a long prefix do not collide"""
    prefix = "x" * 200
    await blacklist.add(prefix + "one", time.time() + 3600)

    assert await blacklist.is_blacklisted(prefix + "one") is True
    assert await blacklist.is_blacklisted(prefix + "two") is False


@pytest.mark.asyncio
async def test_lookup_fails_closed():
    """Test the token is treated as revoked when Redis is unreachable"""
    redis = MagicMock()
    redis.scan_iter.side_effect = RedisConnectionError("connection refused")
    blacklist = TokenBlacklist(redis, strategy="bcrypt", rounds=4)

    assert await blacklist.is_blacklisted("token-a") is True


@pytest.mark.asyncio
async def test_add_propagates_storage_errors():
    """Test write failures are not swallowed"""
    redis = MagicMock()
    redis.set = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    blacklist = TokenBlacklist(redis, strategy="hmac")

    with pytest.raises(RedisConnectionError):
        await blacklist.add("token-a", time.time() + 3600)


@pytest.mark.asyncio
async def test_hmac_strategy(fake_redis):
    """Test the deterministic strategy with direct lookups"""
    blacklist = TokenBlacklist(fake_redis, strategy="hmac")
    await blacklist.add("token-a", time.time() + 3600)

    assert await blacklist.is_blacklisted("token-a") is True
    assert await blacklist.is_blacklisted("token-b") is False

    key = f"{TOKEN_BLACKLIST_PREFIX}{blacklist._hmac('token-a')}"
    assert await fake_redis.exists(key) == 1


@pytest.mark.asyncio
async def test_hmac_lookup_fails_closed():
    """Test the hmac strategy also rejects tokens on Redis errors"""
    redis = MagicMock()
    redis.exists = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    blacklist = TokenBlacklist(redis, strategy="hmac")

    assert await blacklist.is_blacklisted("token-a") is True


def test_unknown_strategy():
    with pytest.raises(ValueError):
        TokenBlacklist(MagicMock(), strategy="plain")
