from leads_app.importer.pipeline.dedupe import (
    NO_MATCH,
    LeadCandidate,
    find_best_match,
    hard_match_key,
    is_hard_duplicate,
    is_soft_duplicate,
    name_similarity,
    soft_duplicate_score,
)


def _bag(**values):
    bag = dict.fromkeys(("email_norm", "phone_norm", "domain_norm", "name_norm", "city_norm"))
    bag.update(values)
    return bag


def test_hard_duplicate_on_any_identity_key():
    assert is_hard_duplicate(_bag(email_norm="a@acme.com"), _bag(email_norm="a@acme.com"))
    assert hard_match_key(_bag(email_norm="a@x.com", phone_norm="5125550100"), _bag(phone_norm="5125550100")) == (
        "phone_norm"
    )
    assert hard_match_key(_bag(domain_norm="acme.com"), _bag(domain_norm="acme.com")) == "domain_norm"


def test_missing_values_never_match():
    assert not is_hard_duplicate(_bag(), _bag())
    assert not is_hard_duplicate(_bag(email_norm=""), _bag(email_norm=""))


def test_soft_duplicate_requires_same_city():
    left = _bag(name_norm="acme plumbing", city_norm="austin")
    assert is_soft_duplicate(left, _bag(name_norm="acme plumbin", city_norm="austin"))
    assert not is_soft_duplicate(left, _bag(name_norm="acme plumbin", city_norm="dallas"))
    assert not is_soft_duplicate(left, _bag(name_norm="acme plumbin"))
    assert is_soft_duplicate(
        _bag(name_norm="acme service", city_norm="austin"), _bag(name_norm="acme services", city_norm="austin")
    )


def test_soft_duplicate_respects_threshold():
    left = _bag(name_norm="acme plumbing", city_norm="austin")
    right = _bag(name_norm="acme plumbin", city_norm="austin")
    assert is_soft_duplicate(left, right, threshold=0.90)
    assert not is_soft_duplicate(left, right, threshold=0.99)
    assert not is_soft_duplicate(left, _bag(name_norm="zenith roofing", city_norm="austin"))


def test_name_similarity_bounds():
    assert name_similarity("acme", "acme") == 1.0
    assert name_similarity("", "acme") == 0.0
    assert name_similarity(None, "acme") == 0.0


def test_soft_score_weights_name_and_city():
    same = soft_duplicate_score(_bag(name_norm="acme", city_norm="austin"), _bag(name_norm="acme", city_norm="austin"))
    other_city = soft_duplicate_score(_bag(name_norm="acme", city_norm="austin"), _bag(name_norm="acme"))
    assert same == 1.0
    assert other_city == 0.8


def test_find_best_match_prefers_hard_over_soft():
    bag = _bag(name_norm="acme plumbing", city_norm="austin", phone_norm="5125550100")
    candidates = [
        LeadCandidate(lead_id=1, bag=_bag(name_norm="acme plumbing", city_norm="austin")),
        LeadCandidate(lead_id=2, bag=_bag(name_norm="zenith", phone_norm="5125550100")),
    ]

    match = find_best_match(bag, candidates)

    assert match.kind == "hard"
    assert match.lead_id == 2
    assert match.matched_on == "phone_norm"


def test_find_best_match_picks_highest_soft_score_and_keeps_earliest_on_tie():
    bag = _bag(name_norm="acme plumbing", city_norm="austin")
    candidates = [
        LeadCandidate(lead_id=3, bag=_bag(name_norm="acme plumbin", city_norm="austin")),
        LeadCandidate(lead_id=4, bag=_bag(name_norm="acme plumbing", city_norm="austin")),
        LeadCandidate(lead_id=5, bag=_bag(name_norm="acme plumbing", city_norm="austin")),
    ]

    match = find_best_match(bag, candidates)

    assert match.kind == "soft"
    assert match.lead_id == 4
    assert match.score == 1.0


def test_find_best_match_without_candidates():
    assert find_best_match(_bag(name_norm="acme", city_norm="austin"), []) == NO_MATCH
