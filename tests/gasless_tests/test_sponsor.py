"""
Tests for sponsor identity resolution.
"""

from __future__ import annotations

import json
import logging
import threading

import base58
import pytest

from gasless.core import sponsor as sponsor_module
from gasless.core.config import SPONSOR_KEY_PLACEHOLDER, Config
from gasless.core.exceptions import ConfigurationError, SponsorResolutionWarning
from gasless.core.sponsor import (
    SponsorProvider,
    SponsorResolution,
    decode_sponsor_secret,
    get_sponsor_provider,
    resolve_sponsor,
)


class TestDecodeSponsorSecret:
    """Tests for the accepted secret encodings."""

    def test_base58_secret_key(self, sponsor_secret, sponsor_keypair):
        assert decode_sponsor_secret(sponsor_secret).pubkey() == sponsor_keypair.pubkey()

    def test_base58_seed(self, sponsor_keypair):
        seed_secret = base58.b58encode(bytes([42] * 32)).decode("ascii")
        assert decode_sponsor_secret(seed_secret).pubkey() == sponsor_keypair.pubkey()

    def test_json_array(self, sponsor_keypair):
        secret = json.dumps(list(bytes(sponsor_keypair)))
        assert decode_sponsor_secret(secret).pubkey() == sponsor_keypair.pubkey()

    def test_surrounding_whitespace_ignored(self, sponsor_secret, sponsor_keypair):
        assert decode_sponsor_secret(f"  {sponsor_secret}\n").pubkey() == sponsor_keypair.pubkey()

    @pytest.mark.parametrize(
        "secret",
        [
            "",
            base58.b58encode(b"\x01" * 10).decode("ascii"),
            "[1, 2, 3]",
            "[not json",
            "0OIl",  # characters outside the base58 alphabet
        ],
    )
    def test_invalid_secrets(self, secret):
        with pytest.raises(ValueError):
            decode_sponsor_secret(secret)


class TestResolveSponsor:
    """Tests for resolution and the ephemeral fallback."""

    def test_valid_secret_is_stable(self, sponsor_secret, sponsor_keypair):
        resolution = resolve_sponsor(sponsor_secret)

        assert resolution.ephemeral is False
        assert resolution.warning is None
        assert resolution.pubkey == sponsor_keypair.pubkey()
        assert resolution.to_dict() == {"sponsor": str(sponsor_keypair.pubkey()), "is_demo": False}

    @pytest.mark.parametrize(
        "secret, reason",
        [
            (None, "missing"),
            ("", "missing"),
            (SPONSOR_KEY_PLACEHOLDER, "placeholder"),
            ("definitely-not-a-key", "invalid"),
        ],
    )
    def test_fallback_is_flagged(self, secret, reason):
        resolution = resolve_sponsor(secret)

        assert resolution.ephemeral is True
        assert isinstance(resolution.warning, SponsorResolutionWarning)
        assert resolution.warning.reason == reason
        data = resolution.to_dict()
        assert data["is_demo"] is True
        assert "warning" in data

    def test_fallback_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="gasless.core.sponsor"):
            resolution = resolve_sponsor(None)

        records = [r for r in caplog.records if getattr(r, "event", None) == "sponsor.ephemeral"]
        assert len(records) == 1
        assert records[0].sponsor == resolution.address

    def test_fallback_generates_fresh_sponsor(self):
        assert resolve_sponsor(None).address != resolve_sponsor(None).address

    @pytest.mark.parametrize("secret", [None, SPONSOR_KEY_PLACEHOLDER, "bogus"])
    def test_fallback_refused_when_not_allowed(self, secret):
        with pytest.raises(ConfigurationError):
            resolve_sponsor(secret, allow_ephemeral=False)

    def test_valid_secret_allowed_without_fallback(self, sponsor_secret):
        assert resolve_sponsor(sponsor_secret, allow_ephemeral=False).ephemeral is False


class TestSponsorProvider:
    """Tests for the process-lifetime sponsor cache."""

    def test_ephemeral_sponsor_cached(self):
        provider = SponsorProvider(secret=None, allow_ephemeral=True)
        assert provider.get() is provider.get()

    def test_concurrent_first_use_resolves_once(self):
        provider = SponsorProvider(secret=None, allow_ephemeral=True)
        results: list[SponsorResolution] = []

        threads = [threading.Thread(target=lambda: results.append(provider.get())) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({r.address for r in results}) == 1

    def test_from_env(self, monkeypatch, sponsor_secret, sponsor_keypair):
        monkeypatch.setenv("GASLESS_SPONSOR_PRIVATE_KEY", sponsor_secret)
        assert SponsorProvider.from_env().get().pubkey == sponsor_keypair.pubkey()

    def test_from_env_placeholder_means_unset(self, monkeypatch):
        monkeypatch.setenv("GASLESS_SPONSOR_PRIVATE_KEY", SPONSOR_KEY_PLACEHOLDER)
        monkeypatch.setattr(Config, "ALLOW_EPHEMERAL_SPONSOR", True)
        resolution = SponsorProvider.from_env().get()
        assert resolution.ephemeral is True
        assert resolution.warning.reason == "missing"

    def test_global_provider_singleton(self, monkeypatch):
        monkeypatch.setattr(sponsor_module, "_global_provider", None)
        assert get_sponsor_provider() is get_sponsor_provider()
