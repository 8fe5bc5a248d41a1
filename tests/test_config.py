"""Tests for Settings configuration model."""

import pytest
from pydantic import ValidationError

from src.config import Settings


class TestGetAllowedUserIds:
    def test_parses_comma_separated(self):
        s = Settings(allowed_user_ids="123,456,789")
        assert s.get_allowed_user_ids() == {123, 456, 789}

    def test_handles_spaces(self):
        s = Settings(allowed_user_ids=" 123 , 456 ")
        assert s.get_allowed_user_ids() == {123, 456}

    def test_empty_string_returns_empty_set(self):
        s = Settings(allowed_user_ids="")
        assert s.get_allowed_user_ids() == set()

    def test_single_id(self):
        s = Settings(allowed_user_ids="42")
        assert s.get_allowed_user_ids() == {42}


class TestDefaults:
    def test_retrieval_defaults(self):
        s = Settings()
        assert s.match_threshold == 0.7
        assert s.message_match_count == 10
        assert s.summary_match_count == 5

    def test_embedding_defaults(self):
        s = Settings()
        assert s.embedding_model == "text-embedding-3-small"
        assert s.embedding_dimensions == 1536

    def test_summarization_defaults(self):
        s = Settings()
        assert s.summarize_threshold == 20
        assert s.summarize_chunk_size == 20

    def test_confirmations_never_expire_by_default(self):
        s = Settings()
        assert s.pending_confirmation_ttl == 0.0


class TestValidation:
    @pytest.mark.parametrize("value", [-0.1, 1.5])
    def test_threshold_out_of_range_rejected(self, value: float):
        with pytest.raises(ValidationError):
            Settings(match_threshold=value)

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValidationError):
            Settings(pending_confirmation_ttl=-1)

    def test_zero_chunk_size_rejected(self):
        with pytest.raises(ValidationError):
            Settings(summarize_chunk_size=0)
