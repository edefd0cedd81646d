"""Unit tests for provider reply parsing."""

import json

from kitchenpal.models.models import Difficulty, VisionMode
from kitchenpal.services.parser import (
    DEFAULT_DISH_NAME,
    STRATEGY_EMBEDDED_JSON,
    STRATEGY_EMPTY,
    STRATEGY_HEURISTIC,
    STRATEGY_JSON,
    estimate_total_time,
    extract_quick_replies,
    extract_recipes,
    first_line_name,
    normalize_difficulty,
    parse_reply,
    parse_structured,
    parse_vision_reply,
    strip_code_fences,
    to_recipe_options,
)

STIR_FRY = {
    "name": "Stir Fry",
    "description": "Quick vegetable stir fry",
    "ingredients": [{"name": "broccoli", "quantity": 2, "unit": "cups"}],
    "instructions": ["Chop vegetables", "Stir fry for 5 minutes"],
    "prepTime": "10 mins",
    "cookTime": "5 mins",
    "servings": 2,
    "difficulty": "Easy",
}


class TestStripCodeFences:
    def test_removes_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_unchanged(self):
        assert strip_code_fences("  hello  ") == "hello"

    def test_empty(self):
        assert strip_code_fences("") == ""


class TestParseStructured:
    """Test the JSON-first, heuristic-second parse."""

    def test_fenced_recipe_json(self):
        raw = "```json\n" + json.dumps({"recipes": [STIR_FRY]}) + "\n```"

        result = parse_structured(raw)

        assert result.strategy == STRATEGY_JSON
        assert extract_recipes(result.data)[0].name == "Stir Fry"

    def test_unfenced_json_round_trips(self):
        payload = {"recipes": [STIR_FRY]}

        fenced = extract_recipes(parse_structured(f"```json\n{json.dumps(payload)}\n```").data)
        unfenced = extract_recipes(parse_structured(json.dumps(payload)).data)

        assert fenced == unfenced

    def test_prose_with_fenced_block(self):
        raw = "Here is something tasty!\n\n```json\n" + json.dumps({"recipes": [STIR_FRY]}) + "\n```\n\nEnjoy!"

        result = parse_structured(raw)

        assert result.strategy == STRATEGY_EMBEDDED_JSON
        assert "Here is something tasty!" in result.text
        assert "Enjoy!" in result.text
        assert "```" not in result.text

    def test_prose_with_bare_object(self):
        raw = 'Try this: {"name": "Omelette", "summary": "Eggs"} and enjoy'

        result = parse_structured(raw)

        assert result.strategy == STRATEGY_EMBEDDED_JSON
        assert result.data["name"] == "Omelette"

    def test_non_json_uses_heuristic(self):
        result = parse_structured("## Lemon Pasta\nA bright weeknight dinner.")

        assert result.strategy == STRATEGY_HEURISTIC
        assert result.data is None
        assert result.fallback_name == "Lemon Pasta"

    def test_empty_reply(self):
        assert parse_structured("   ").strategy == STRATEGY_EMPTY

    def test_invalid_json_never_raises(self):
        result = parse_structured("```json\n{not valid json\n```")

        assert result.strategy == STRATEGY_HEURISTIC
        assert extract_recipes(result.data) == []

    def test_deeply_nested_json_never_raises(self):
        result = parse_structured("[" * 100000)

        assert result.strategy == STRATEGY_HEURISTIC
        assert result.data is None

    def test_deeply_nested_object_in_prose(self):
        raw = "Here you go " + '{"a":' * 50000 + "1" + "}" * 50000

        parsed = parse_reply(raw)
        vision = parse_vision_reply(raw)

        assert parsed.strategy == STRATEGY_HEURISTIC
        assert parsed.recipes == []
        assert parsed.content
        assert vision.ingredients == []


class TestFirstLineName:
    def test_strips_markdown(self):
        assert first_line_name("\n\n**Chicken Curry**\nSpicy") == "Chicken Curry"
        assert first_line_name("# Pancakes") == "Pancakes"

    def test_none_for_blank(self):
        assert first_line_name("   \n") is None


class TestExtractRecipes:
    def test_accepts_list_and_single_object(self):
        assert len(extract_recipes([STIR_FRY, STIR_FRY])) == 2
        assert extract_recipes(STIR_FRY)[0].servings == 2

    def test_skips_incomplete_recipes(self):
        incomplete = {"name": "Mystery", "ingredients": "lots"}

        assert extract_recipes({"recipes": [incomplete, STIR_FRY]})[0].name == "Stir Fry"
        assert len(extract_recipes({"recipes": [incomplete, STIR_FRY]})) == 1

    def test_snake_case_and_defaults(self):
        recipe = extract_recipes(
            {"name": "Soup", "ingredients": [], "instructions": ["Simmer"], "prep_time": "5 mins", "servings": "six"}
        )[0]

        assert recipe.prep_time == "5 mins"
        assert recipe.servings == 4
        assert recipe.difficulty == Difficulty.MEDIUM

    def test_non_json_data(self):
        assert extract_recipes(None) == []
        assert extract_recipes("text") == []


class TestRecipeOptions:
    def test_difficulty_normalization(self):
        assert normalize_difficulty("beginner") == Difficulty.EASY
        assert normalize_difficulty("HARD") == Difficulty.HARD
        assert normalize_difficulty(None) == Difficulty.MEDIUM

    def test_total_time(self):
        assert estimate_total_time("10 mins", "1 hour") == "70 mins"
        assert estimate_total_time("", "about 20 minutes") == "about 20 minutes"

    def test_options_from_recipes(self):
        recipes = extract_recipes({"recipes": [STIR_FRY, {**STIR_FRY, "name": "Fried Rice", "description": "x" * 200}]})

        options = to_recipe_options(recipes)

        assert [option.id for option in options] == ["recipe-1", "recipe-2"]
        assert options[0].estimated_time == "15 mins"
        assert options[0].difficulty == Difficulty.EASY
        assert len(options[1].short_description) == 120
        assert options[1].short_description.endswith("...")


class TestQuickReplies:
    def test_strings_and_objects(self):
        replies = extract_quick_replies({"quickReplies": ["More", {"label": "Vegan", "value": "Show vegan"}]})

        assert [reply.label for reply in replies] == ["More", "Vegan"]
        assert replies[1].value == "Show vegan"

    def test_missing(self):
        assert extract_quick_replies({"recipes": []}) == []
        assert extract_quick_replies(None) == []


class TestParseReply:
    def test_prose_with_recipes(self):
        raw = "Sure! Here's an idea.\n\n```json\n" + json.dumps({"recipes": [STIR_FRY]}) + "\n```"

        reply = parse_reply(raw)

        assert reply.content == "Sure! Here's an idea."
        assert reply.recipes[0].name == "Stir Fry"
        assert reply.recipe_options[0].id == "recipe-1"
        assert reply.strategy == STRATEGY_EMBEDDED_JSON

    def test_pure_json_reply_gets_summary_content(self):
        reply = parse_reply(json.dumps({"recipes": [STIR_FRY]}))

        assert reply.content == "Here are some recipes you could try: Stir Fry."

    def test_plain_text_reply(self):
        reply = parse_reply("Boil the pasta for 8 minutes.")

        assert reply.content == "Boil the pasta for 8 minutes."
        assert reply.recipes == []
        assert reply.strategy == STRATEGY_HEURISTIC


class TestParseVisionReply:
    def test_json_dish(self):
        raw = '```json\n{"name": "Pad Thai", "summary": "Rice noodles", "ingredients": ["noodles", "peanuts"]}\n```'

        result = parse_vision_reply(raw)

        assert result.name == "Pad Thai"
        assert result.summary == "Rice noodles"
        assert result.ingredients == ["noodles", "peanuts"]

    def test_heuristic_dish_name(self):
        result = parse_vision_reply("Margherita Pizza\nClassic tomato and mozzarella.")

        assert result.name == "Margherita Pizza"
        assert result.summary.startswith("Margherita Pizza")
        assert result.ingredients == []

    def test_ingredients_mode_has_no_default_name(self):
        result = parse_vision_reply('{"ingredients": ["eggs", "milk"], "summary": "A fridge"}', VisionMode.INGREDIENTS)

        assert result.name is None
        assert result.ingredients == ["eggs", "milk"]

    def test_dish_mode_default_name(self):
        result = parse_vision_reply('{"summary": "Something brown"}')

        assert result.name == DEFAULT_DISH_NAME
