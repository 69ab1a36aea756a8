"""Tests for fact fingerprint detection and ordinal parsing."""

from memengine.memory.fingerprint import (
    PATTERNS_BY_ID,
    detect_fingerprint,
    extract_values,
    normalize_value,
    values_conflict,
    values_differ,
)
from memengine.memory.ordinals import detect_ordinal, detect_ordinals, normalize_subject


class TestDetectFingerprint:
    """Tests for canonical attribute detection."""

    def test_salary_with_value(self):
        match = detect_fingerprint("Salary: $95,000.")
        assert match.fingerprint == "user_salary"
        assert match.method == "indicator_with_value"
        assert match.confidence == 0.90
        assert match.values == ["$95,000"]

    def test_salary_stated_with_earning_verb(self):
        match = detect_fingerprint("I make $80,000 a year as a teacher")
        assert match.fingerprint == "user_salary"
        assert match.values == ["$80,000"]

    def test_phone_number(self):
        match = detect_fingerprint("My phone number is 555-123-4567")
        assert match.fingerprint == "user_phone_number"
        assert match.confidence == 0.95
        assert match.values == ["555-123-4567"]

    def test_allergy_value_captured(self):
        match = detect_fingerprint("I am allergic to peanuts")
        assert match.fingerprint == "user_allergy"
        assert match.values == ["peanuts"]

    def test_residence_value_stops_at_clause(self):
        match = detect_fingerprint("I moved to Lisbon in 2022")
        assert match.fingerprint == "user_location_residence"
        assert match.values == ["Lisbon"]

    def test_meeting_time_not_mistaken_for_residence(self):
        match = detect_fingerprint("Meeting moved to 4pm")
        assert match.fingerprint == "user_meeting_time"
        assert match.values == ["4pm"]

    def test_pet_name_captured(self):
        match = detect_fingerprint("I have a dog named Rex")
        assert match.fingerprint == "user_pet"
        assert match.values == ["Rex"]

    def test_third_person_compressed_fact(self):
        match = detect_fingerprint("User's wife is Sarah.")
        assert match.fingerprint == "user_spouse_name"
        assert match.values == ["Sarah"]

    def test_indicator_without_value_reduced_confidence(self):
        match = detect_fingerprint("My salary went up", indicator_only_factor=0.8)
        assert match.fingerprint == "user_salary"
        assert match.method == "indicator_without_value"
        assert match.confidence == 0.72
        assert match.values == []

    def test_family_mentions_are_not_fingerprinted(self):
        assert detect_fingerprint("My son is named Tom and he plays soccer").fingerprint is None
        assert detect_fingerprint("My daughter is named Anna and she loves painting").fingerprint is None

    def test_generic_verbs_are_not_fingerprinted(self):
        assert detect_fingerprint("I make pottery every weekend in my garage").fingerprint is None
        assert detect_fingerprint("I changed my mind about the trip").fingerprint is None
        assert detect_fingerprint("Call the plumber about the number of leaks").fingerprint is None

    def test_lowercase_word_is_not_a_name(self):
        assert detect_fingerprint("My dog is happy today").fingerprint is None

    def test_no_match(self):
        match = detect_fingerprint("I like hiking")
        assert match.fingerprint is None
        assert match.method == "no_match"
        assert match.confidence == 0.0

    def test_invalid_input(self):
        assert detect_fingerprint("").fingerprint is None
        assert detect_fingerprint(None).fingerprint is None

    def test_indicator_must_be_a_word(self):
        """"pay" inside "paypal" is not a salary indicator."""
        assert detect_fingerprint("Uses paypal 12345").fingerprint != "user_salary"


class TestValueComparison:
    """Tests for value extraction and comparison."""

    def test_normalize_value(self):
        assert normalize_value("$95,000") == "95000"
        assert normalize_value("95k") == "95000"
        assert normalize_value("(555) 123-4567") == "5551234567"
        assert normalize_value("4 PM") == "4:00pm"
        assert normalize_value("two") == "2"
        assert normalize_value("  The Acme Corp ") == "acme corp"

    def test_extract_normalized_values(self):
        assert extract_values("user_salary", "Salary: $95,000 (was 80k)") == {"95000"}
        assert extract_values("user_salary", "I earn 95k") == {"95000"}

    def test_values_differ(self):
        assert values_differ("user_salary", "Salary: $80,000.", "Salary: $95,000.")
        assert not values_differ("user_salary", "Salary: $95,000.", "My salary is 95k")

    def test_new_text_without_value_never_differs(self):
        assert not values_differ("user_salary", "Salary: $80,000.", "Salary went up")

    def test_unreadable_old_value_never_differs(self):
        assert not values_differ("user_salary", "User got a raise.", "Salary: $95,000.")

    def test_names_compared_not_wording(self):
        assert values_differ("user_pet", "I have a dog named Rex", "My dog is Max")
        assert not values_differ("user_pet", "I have a dog named Rex", "User's dog is named Rex.")

    def test_additive_attributes_never_conflict(self):
        assert not values_differ("user_allergy", "Allergic to peanuts.", "Allergic to shellfish.")
        assert not values_conflict("user_allergy", {"peanuts"}, {"shellfish"})

    def test_overlapping_values_do_not_conflict(self):
        assert not values_conflict("user_pet", {"rex"}, {"rex", "tom"})
        assert values_conflict("user_pet", {"rex"}, {"tom"})

    def test_every_pattern_captures_values(self):
        for pattern in PATTERNS_BY_ID.values():
            assert pattern.indicators
            assert pattern.value_patterns
            assert all(vp.groups == 1 for vp in pattern.value_patterns)
            assert 0.0 < pattern.confidence <= 1.0


class TestOrdinals:
    """Tests for ordinal mention detection."""

    def test_detect_multiple_ordinals(self):
        facts = detect_ordinals("My first code is CHARLIE and my second code is DELTA")
        assert [(f.ordinal, f.subject, f.value) for f in facts] == [
            (1, "code", "CHARLIE"),
            (2, "code", "DELTA"),
        ]

    def test_query_without_value(self):
        fact = detect_ordinal("What is my second code?")
        assert fact.ordinal == 2
        assert fact.subject == "code"
        assert fact.value is None
        assert fact.word == "second"

    def test_compressed_fact_form(self):
        fact = detect_ordinal("User's first code: CHARLIE")
        assert (fact.ordinal, fact.subject, fact.value) == (1, "code", "CHARLIE")

    def test_numeric_ordinal_word(self):
        assert detect_ordinal("the 3rd password was kiwi").ordinal == 3

    def test_no_ordinal(self):
        assert detect_ordinal("I drive a Tesla Model 3") is None
        assert detect_ordinals("") == []

    def test_normalize_subject(self):
        assert normalize_subject("Codes") == "code"
        assert normalize_subject("class") == "class"
        assert normalize_subject("bus") == "bus"
