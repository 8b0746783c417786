"""
Tests for AI food basket parsing and catalog matching (the LLM is mocked)
"""

import json
from unittest.mock import MagicMock

import pytest

from food_basket_assistant import (
    BasketIngredient, FoodBasket, _extract_json_from_response,
    generate_food_basket, match_basket_products, parse_food_basket
)

BASKET = {
    "name": "Sukuma and Ugali",
    "description": "A quick Kenyan staple",
    "recipe": "1. Boil water\n2. Add flour",
    "ingredients": [
        {"name": "Maize Flour", "quantity": "1", "unit": "kg"},
        {"name": "sukuma wiki", "quantity": "2", "unit": "bunches"},
        {"name": "Tomatoes", "quantity": "3", "unit": "pieces"},
        {"name": "Saffron", "quantity": "1", "unit": "pinch"},
    ],
    "servings": 4,
    "prepTime": 10,
    "cookTime": 25,
    "difficulty": "easy",
    "tags": ["Quick", "Vegetarian"],
}


def fake_client(content):
    client = MagicMock()
    client.chat.completions.create.return_value.choices = [
        MagicMock(message=MagicMock(content=content))
    ]
    return client


def test_extract_json_from_markdown():
    wrapped = "Here you go:\n```json\n{\"name\": \"Pilau\"}\n```\nEnjoy!"

    assert _extract_json_from_response(wrapped) == '{"name": "Pilau"}'
    assert _extract_json_from_response('Sure! {"a": 1} Thanks') == '{"a": 1}'


def test_parse_food_basket_uses_camel_case_times():
    basket = parse_food_basket(json.dumps(BASKET))

    assert basket.prep_time == 10
    assert basket.cook_time == 25
    assert basket.ingredients[1].name == "sukuma wiki"


def test_parse_rejects_bad_output():
    with pytest.raises(RuntimeError):
        parse_food_basket("not json at all")
    with pytest.raises(RuntimeError):
        parse_food_basket(json.dumps({"name": "Nothing"}))
    with pytest.raises(RuntimeError):
        parse_food_basket(json.dumps({"name": "Empty", "ingredients": []}))


def test_generate_food_basket_sends_preferences():
    client = fake_client("```json\n" + json.dumps(BASKET) + "\n```")

    basket = generate_food_basket(["vegetarian", "quick"], client=client)

    assert basket.name == "Sukuma and Ugali"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "deepseek-chat"
    assert "Shopper preferences: vegetarian, quick" in kwargs["messages"][1]["content"]


def test_generate_wraps_api_failures():
    client = MagicMock()
    client.chat.completions.create.side_effect = ConnectionError("offline")

    with pytest.raises(RuntimeError):
        generate_food_basket([], client=client)


def test_match_basket_products(session, product):
    basket = FoodBasket(**BASKET)

    matched, unmatched = match_basket_products(session, basket)

    assert [(i.name, p.name) for i, p in matched] == [
        ("Maize Flour", "Maize Flour"),
        ("sukuma wiki", "Sukuma Wiki"),
        ("Tomatoes", "Tomatoes"),
    ]
    assert [i.name for i in unmatched] == ["Saffron"]


def test_partial_names_pick_cheapest_in_stock(session, product):
    product("Cooking Oil").stock = 0
    basket = FoodBasket(
        name="Test",
        ingredients=[BasketIngredient(name="oil"), BasketIngredient(name="milk")],
    )

    matched, unmatched = match_basket_products(session, basket)

    assert [p.name for _, p in matched] == ["Fresh Milk"]
    assert [i.name for i in unmatched] == ["oil"]
