"""Shared test fixtures for portracker router tests."""

import pathlib

import pytest

from portracker_router.config import Settings
from portracker_router.secrets.codec import CredentialCodec

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]

# Exactly 32 bytes, used as the raw AES-256 key.
TEST_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def repo_root() -> pathlib.Path:
    return REPO_ROOT


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def codec() -> CredentialCodec:
    return CredentialCodec(TEST_KEY)
