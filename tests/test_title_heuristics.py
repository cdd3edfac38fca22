"""
Tests for thread-title tags, cleaning and name hints
"""
from title_heuristics import clean_title, extract_performer_names, extract_studio_names, extract_tags_from_title


class TestTags:

    def test_tags_come_back_in_canonical_order_and_spelling(self):
        assert extract_tags_from_title('onlyfans milf Petite xxx') == ['XXX', 'OnlyFans', 'MILF', 'Petite']

    def test_tags_must_stand_alone(self):
        assert extract_tags_from_title('Teenage Caucasian Feetwear') == []

    def test_hyphenated_words_do_not_tag(self):
        assert extract_tags_from_title('MILF-lover and Teen-style') == []
        assert clean_title('Jane MILF-lover Set') == 'Jane MILF-lover Set'

    def test_tags_next_to_brackets_pipes_and_punctuation(self):
        assert extract_tags_from_title('Jane|OnlyFans (Petite, Asian)') == ['OnlyFans', 'Petite', 'Asian']

    def test_spaced_tag(self):
        assert extract_tags_from_title('Jane [T H I C C] Set') == ['T H I C C']

    def test_empty_title(self):
        assert extract_tags_from_title('') == []
        assert extract_tags_from_title(None) == []


class TestCleanTitle:

    def test_bracketed_tag_removed(self):
        assert clean_title('[OnlyFans] Jane Doe - Summer Set') == 'Jane Doe - Summer Set'

    def test_all_bracket_styles(self):
        assert clean_title('(MILF) {Asian} 【XXX】 Jane') == 'Jane'

    def test_standalone_tag_and_dangling_separator(self):
        assert clean_title('Jane Doe - OnlyFans') == 'Jane Doe'
        assert clean_title('OnlyFans | Jane Doe') == 'Jane Doe'

    def test_whitespace_collapsed(self):
        assert clean_title('  Jane    Doe   ') == 'Jane Doe'

    def test_untagged_title_unchanged(self):
        assert clean_title('Jane Doe Beach Day') == 'Jane Doe Beach Day'

    def test_empty(self):
        assert clean_title(None) == ''


class TestPerformerNames:

    def test_dash_prefix(self):
        assert extract_performer_names('[OnlyFans] Jane Doe - Summer Set') == ['Jane Doe']

    def test_bracket_token(self):
        assert extract_performer_names('[Jane Smith] Beach Pack [XXX]') == ['Jane Smith']

    def test_pipe_prefix_and_aka(self):
        assert extract_performer_names('Jane Doe | OnlyFans (aka JD)') == ['Jane Doe', 'JD']

    def test_duplicates_collapsed(self):
        assert extract_performer_names('[Jane Doe] - Jane Doe Set') == ['Jane Doe']

    def test_no_pattern(self):
        assert extract_performer_names('Beach Day') == []


class TestStudioNames:

    def test_keyword_pairs_with_previous_word(self):
        assert extract_studio_names('Brazzers Network - Pool Scene') == ['Brazzers Network']

    def test_keyword_as_first_word_is_ignored(self):
        assert extract_studio_names('Network Special') == []

    def test_multiple_studios(self):
        assert extract_studio_names('Acme Studios and Vixen Official') == ['Acme Studios', 'Vixen Official']
