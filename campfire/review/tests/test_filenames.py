from campfire.review.filenames import (
    RECIPE_HERO_ASPECT_ORDER,
    aspect_priority,
    get_version,
    parse_ad_filename,
    recipe_sort_key,
    version_from_filename,
)
from campfire.review.models import AdUnit


def test_parse_full_filename():
    info = parse_ad_filename("BR1_G1_RC1_9x16_V2.png")
    assert info.brand_code == "BR1"
    assert info.ad_group_code == "G1"
    assert info.recipe_code == "RC1"
    assert info.aspect_ratio == "9x16"
    assert info.version == 2


def test_parse_four_part_names():
    assert parse_ad_filename("BR1_G1_RC1_V3.jpg").version == 3
    assert parse_ad_filename("BR1_G1_RC1_V3.jpg").aspect_ratio == ""
    assert parse_ad_filename("BR1_G1_RC1_1x1.jpg").aspect_ratio == "1x1"
    assert parse_ad_filename("BR1_G1_RC1_1x1.jpg").version is None


def test_parse_empty_and_short_names():
    assert parse_ad_filename("").recipe_code == ""
    assert parse_ad_filename(None).brand_code == ""
    assert parse_ad_filename("BR1.png").brand_code == "BR1"


def test_version_fallbacks():
    assert version_from_filename("BR1_G1_RC1_9x16_V4.png") == 4
    assert version_from_filename("hero-v7.png") == 7
    assert version_from_filename("hero.png") == 1
    assert version_from_filename(None) == 1


def test_get_version_prefers_explicit_field():
    unit = AdUnit(groupId="g1", filename="BR1_G1_RC1_9x16_V2.png", version=5)
    assert get_version(unit) == 5
    assert get_version("BR1_G1_RC1_9x16_V2.png") == 2
    assert get_version(None) == 1


def test_aspect_priority_unknown_sorts_last():
    assert aspect_priority("9x16") == 0
    assert aspect_priority("Snapchat") == 5
    assert aspect_priority("16x9") == 6
    assert aspect_priority("1x1", RECIPE_HERO_ASPECT_ORDER) == 2
    assert aspect_priority("4x5", RECIPE_HERO_ASPECT_ORDER) == 3


def test_recipe_sort_key_is_numeric_aware():
    codes = ["10", "2", "b", "A", "1"]
    assert sorted(codes, key=recipe_sort_key) == ["1", "2", "10", "A", "b"]


def test_slot_fields_filled_at_ingestion():
    unit = AdUnit(groupId="g1", filename="BR1_G1_RC1_3x5_V2.png")
    assert unit.brandCode == "BR1"
    assert unit.recipeCode == "RC1"
    assert unit.aspectRatio == "3x5"
    assert unit.version == 2
    assert unit.slot_key.is_complete
    assert unit.slot_key.label() == "BR1/g1/RC1/3x5"
