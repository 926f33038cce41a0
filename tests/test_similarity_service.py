"""Unit tests for SimilarityService — Jaccard scoring and weighted aggregation."""
import pytest

from app.services.similarity_service import MatchResult, SimilarityService
from app.services.taste_vector import build_from_record, build_taste_vector


@pytest.fixture
def similarity_service():
    return SimilarityService()


class TestJaccard:
    """Tests for the per-category similarity measure."""

    def test_identical_sets(self, similarity_service):
        assert similarity_service.jaccard({"a", "b"}, {"a", "b"}) == 1.0

    def test_disjoint_sets(self, similarity_service):
        assert similarity_service.jaccard({"a"}, {"b"}) == 0.0

    def test_partial_overlap(self, similarity_service):
        # |{b}| / |{a, b, c}|
        assert similarity_service.jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)

    def test_both_empty_is_one(self, similarity_service):
        assert similarity_service.jaccard(set(), set()) == 1.0

    def test_one_empty_is_zero(self, similarity_service):
        assert similarity_service.jaccard({"a"}, set()) == 0.0
        assert similarity_service.jaccard(set(), {"a"}) == 0.0

    def test_symmetric(self, similarity_service):
        a, b = {"x", "y", "z"}, {"y", "q"}
        assert similarity_service.jaccard(a, b) == similarity_service.jaccard(b, a)


class TestWeightTable:
    def test_seventeen_categories(self, similarity_service):
        assert len(similarity_service.CATEGORY_WEIGHTS) == 17

    def test_artist_heaviest_demographics_lightest(self, similarity_service):
        weights = similarity_service.CATEGORY_WEIGHTS
        assert max(weights, key=weights.get) == "artist"
        assert min(weights, key=weights.get) == "demographics"

    def test_table_is_read_only(self, similarity_service):
        with pytest.raises(TypeError):
            similarity_service.CATEGORY_WEIGHTS["artist"] = 9.9


class TestCompare:
    """Tests for the weighted aggregate with high-signal bonus."""

    def test_drake_inception_worked_example(
        self, similarity_service, user_x_record, candidate_y_record
    ):
        """artist shared (1.0 x 1.5), movie disjoint (0 x 1.4).

        base = 1.5 / 2.9 ~ 0.517, +0.1 artist bonus ~ 0.617.
        """
        result = similarity_service.compare(
            build_from_record(user_x_record),
            build_from_record(candidate_y_record),
            "user_y",
        )
        assert result is not None
        assert result.base_score == pytest.approx(1.5 / 2.9)
        assert result.match_score == pytest.approx(1.5 / 2.9 + 0.1)
        assert result.shared_fields == ["artist"]
        assert result.shared_entities == {"artist": ["drake"]}
        assert result.total_shared_items == 1

    def test_no_shared_categories_excluded(self, similarity_service):
        mine = build_taste_vector({"artist": ["Drake"]})
        theirs = build_taste_vector({"movie": ["Inception"]})
        assert similarity_service.compare(mine, theirs, "u") is None

    def test_shared_category_without_overlap_excluded(self, similarity_service):
        mine = build_taste_vector({"artist": ["Drake"]})
        theirs = build_taste_vector({"artist": ["SZA"]})
        assert similarity_service.compare(mine, theirs, "u") is None

    def test_empty_vectors_excluded(self, similarity_service):
        empty = build_taste_vector({})
        full = build_taste_vector({"artist": ["Drake"]})
        assert similarity_service.compare(empty, empty, "u") is None
        assert similarity_service.compare(empty, full, "u") is None
        assert similarity_service.compare(full, empty, "u") is None

    def test_identity_scores_one(self, similarity_service):
        vector = build_taste_vector({"podcast": ["Serial"], "tag": ["jazz"]})
        result = similarity_service.compare(vector, vector, "self")
        assert result.base_score == pytest.approx(1.0)
        assert result.match_score == pytest.approx(1.0)

    def test_score_clamped_to_one(self, similarity_service):
        interests = {"artist": ["A"], "movie": ["M"], "book": ["B"], "brand": ["N"]}
        vector = build_taste_vector(interests)
        result = similarity_service.compare(vector, vector, "u")
        # base 1.0 plus four bonuses
        assert result.base_score == pytest.approx(1.0)
        assert result.match_score == 1.0

    def test_low_signal_category_gets_no_bonus(self, similarity_service):
        mine = build_taste_vector({"podcast": ["Serial", "Radiolab"]})
        theirs = build_taste_vector({"podcast": ["Serial"]})
        result = similarity_service.compare(mine, theirs, "u")
        assert result.match_score == pytest.approx(0.5)
        assert result.match_score == result.base_score

    def test_base_score_symmetric(self, similarity_service):
        a = build_taste_vector({"artist": ["Drake", "SZA"], "movie": ["Heat"], "tag": ["indie"]})
        b = build_taste_vector({"artist": ["SZA"], "movie": ["Heat", "Alien"], "book": ["Dune"]})
        ab = similarity_service.compare(a, b, "b")
        ba = similarity_service.compare(b, a, "a")
        assert ab.base_score == pytest.approx(ba.base_score)
        assert ab.match_score == pytest.approx(ba.match_score)
        assert ab.shared_fields == ba.shared_fields

    def test_shared_samples_capped_at_five(self, similarity_service):
        names = [f"Band {i}" for i in range(8)]
        vector = build_taste_vector({"artist": names})
        result = similarity_service.compare(vector, vector, "u")
        assert len(result.shared_entities["artist"]) == 5
        assert result.total_shared_items == 5
        assert result.shared_entities["artist"] == sorted(n.casefold() for n in names)[:5]

    def test_enrichment_entity_id_overlap(self, similarity_service):
        mine = build_taste_vector({}, {"artist": [{"entity_id": "E1", "name": "Drake"}]})
        theirs = build_taste_vector({}, {"artist": [{"entity_id": "E1", "name": "Aubrey Graham"}]})
        result = similarity_service.compare(mine, theirs, "u")
        assert result.shared_entities == {"artist": ["E1"]}
        # |{E1}| / |{E1, drake, aubrey graham}|
        assert result.base_score == pytest.approx(1 / 3)

    def test_scores_within_bounds(self, similarity_service):
        mine = build_taste_vector({"artist": ["a", "b", "c"], "locality": ["x"]})
        theirs = build_taste_vector({"artist": ["c", "d"], "locality": ["y"]})
        result = similarity_service.compare(mine, theirs, "u")
        assert 0.0 <= result.base_score <= result.match_score <= 1.0


class TestMatchResult:
    def test_as_dict_includes_total(self):
        result = MatchResult(
            candidate_user_id="u",
            base_score=0.4,
            match_score=0.5,
            shared_fields=["artist", "movie"],
            shared_entities={"artist": ["a", "b"], "movie": ["m"]},
        )
        data = result.as_dict()
        assert data["total_shared_items"] == 3
        assert data["candidate_user_id"] == "u"
        assert data["shared_fields"] == ["artist", "movie"]
