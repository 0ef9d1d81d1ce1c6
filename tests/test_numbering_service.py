"""Unit tests for invoice numbering and number allocation."""

from unittest import mock

import pytest

from invoicing.errors import ConflictError, DuplicateNumberError, ValidationError
from invoicing.services.numbering_service import (
    NumberAllocator,
    check_manual_number,
    format_number,
    highest_sequence,
    next_number,
    parse_suffix,
)


class TestNextNumber:
    def test_follows_highest_existing(self):
        assert next_number(["A00001", "A00002", "A00007"]) == "A00008"

    def test_empty_store_starts_at_one(self):
        assert next_number([]) == "A00001"

    def test_other_prefixes_and_free_form_numbers_are_ignored(self):
        existing = ["A00003", "B00042", "INV-2024-01", "A12X", "AB00099", ""]

        assert next_number(existing) == "A00004"

    def test_width_overflow_grows_the_number(self):
        assert next_number(["A99998", "A99999"]) == "A100000"

    def test_numeric_not_lexicographic_maximum(self):
        # "A99999" > "A100000" en ordre lexicographique
        assert next_number(["A100000", "A99999"]) == "A100001"

    def test_custom_prefix_and_width(self):
        assert next_number(["INV-0009"], prefix="INV-", width=4) == "INV-0010"

    def test_is_pure(self):
        existing = ["A00001"]

        assert next_number(existing) == next_number(existing) == "A00002"
        assert existing == ["A00001"]


class TestHelpers:
    def test_parse_suffix(self):
        assert parse_suffix("A00012", "A") == 12
        assert parse_suffix("A", "A") is None
        assert parse_suffix("B00012", "A") is None

    def test_highest_sequence(self):
        assert highest_sequence(["A00002", "A00010", "A00003"], "A") == 10
        assert highest_sequence([], "A") == 0

    def test_format_number(self):
        assert format_number("A", 1) == "A00001"
        assert format_number("A", 123456) == "A123456"


class TestManualNumber:
    def test_free_number_is_accepted(self):
        assert check_manual_number(" INV-1 ", ["A00001"]) == "INV-1"

    def test_duplicate_is_rejected(self):
        with pytest.raises(DuplicateNumberError) as exc:
            check_manual_number("A00001", ["A00001"])
        assert exc.value.field == "invoice_number"
        assert "duplicate" in str(exc.value).lower()

    @pytest.mark.parametrize("number", ["", "   ", None])
    def test_empty_is_rejected(self, number):
        with pytest.raises(ValidationError):
            check_manual_number(number, [])


class TestNumberAllocator:
    def test_unique_retry_proposes_from_store(self, repo, invoice_factory):
        repo.commit(invoice_factory(id="inv-1", invoice_number="A00004"))

        assert NumberAllocator(repo).propose() == "A00005"

    def test_commit_callback_receives_number(self, repo):
        allocator = NumberAllocator(repo)

        assert allocator.allocate_and_commit(lambda number: number) == "A00001"

    def test_retries_after_duplicate(self, repo):
        allocator = NumberAllocator(repo, max_retries=3)
        commit = mock.Mock(side_effect=[DuplicateNumberError("A00001"), "saved"])

        assert allocator.allocate_and_commit(commit) == "saved"
        assert commit.call_count == 2

    def test_gives_up_with_conflict(self, repo):
        allocator = NumberAllocator(repo, max_retries=2)
        commit = mock.Mock(side_effect=DuplicateNumberError("A00001"))

        with pytest.raises(ConflictError) as exc:
            allocator.allocate_and_commit(commit)
        assert commit.call_count == 2
        assert exc.value.field == "invoice_number"

    def test_counter_is_seeded_from_existing_numbers(self, repo, invoice_factory):
        repo.commit(invoice_factory(id="inv-1", invoice_number="A00041"))
        allocator = NumberAllocator(repo, strategy="counter")

        assert allocator.propose() == "A00042"
        assert allocator.propose() == "A00043"

    def test_counter_never_hands_out_the_same_number(self, repo):
        allocator = NumberAllocator(repo, strategy="counter")

        numbers = [allocator.propose() for _ in range(5)]

        assert numbers == ["A00001", "A00002", "A00003", "A00004", "A00005"]
