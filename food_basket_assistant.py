"""
AI food baskets

- DeepSeek (OpenAI-compatible API) suggests a recipe basket for the shopper's preferences
- Ingredients are matched against in-stock catalog products so the basket can go straight to the cart
"""

import json
import logging
from typing import List, Optional

from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from config import StorefrontConfig

logger = logging.getLogger(__name__)

DEEPSEEK_MODEL = "deepseek-chat"

# --------------------- Pydantic models ---------------------


class BasketIngredient(BaseModel):
    name: str
    quantity: str = "1"
    unit: str = "piece"


class FoodBasket(BaseModel):
    name: str
    description: str = ""
    recipe: str = ""
    ingredients: List[BasketIngredient]
    servings: int = 4
    prep_time: int = Field(0, alias="prepTime")
    cook_time: int = Field(0, alias="cookTime")
    difficulty: str = "easy"
    tags: List[str] = []

    model_config = {"populate_by_name": True}


# --------------------- Prompt ---------------------

FOOD_BASKET_PROMPT = """You are a helpful Kenyan home-cooking assistant. Suggest ONE recipe basket.

IMPORTANT: Return ONLY a valid JSON object (no markdown, no extra text) in this exact format:
{
  "name": "Recipe name",
  "description": "One sentence description",
  "recipe": "1. Step one\\n2. Step two",
  "ingredients": [{"name": "Tomatoes", "quantity": "4", "unit": "pieces"}],
  "servings": 4,
  "prepTime": 15,
  "cookTime": 30,
  "difficulty": "easy",
  "tags": ["Quick", "Vegetarian"]
}

Rules:
- 4-8 ingredients, each a common grocery item sold in Nairobi supermarkets
- difficulty is one of easy, medium, hard
- Respect dietary preferences and allergies

Shopper preferences: <<PREFERENCES>>"""


_client: Optional[OpenAI] = None


def get_client() -> OpenAI:
    """Create the DeepSeek client on first use"""
    global _client
    if _client is None:
        if not StorefrontConfig.DEEPSEEK_API_KEY:
            raise ValueError(
                "DEEPSEEK_API_KEY is required for AI food baskets. "
                "Please set it in your .env file."
            )
        _client = OpenAI(
            api_key=StorefrontConfig.DEEPSEEK_API_KEY,
            base_url=StorefrontConfig.DEEPSEEK_BASE_URL
        )
    return _client


def _extract_json_from_response(response_text: str) -> str:
    """
    Extract JSON from an LLM response that may be wrapped in a markdown
    code block or surrounded by extra text.
    """
    text = response_text.strip()

    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        if end > start:
            text = text[start:end].strip()
    elif "```" in text:
        start = text.find("```") + 3
        end = text.find("```", start)
        if end > start:
            text = text[start:end].strip()

    if "{" in text and "}" in text:
        start = text.find("{")
        end = text.rfind("}") + 1
        text = text[start:end]

    return text


def parse_food_basket(response_text: str) -> FoodBasket:
    """
    Raises:
        RuntimeError: If the response is not a valid basket
    """
    try:
        payload = json.loads(_extract_json_from_response(response_text))
        basket = FoodBasket(**payload)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse LLM output as JSON: {e}")
    except (TypeError, ValidationError) as e:
        raise RuntimeError(f"Invalid food basket structure: {e}")

    if not basket.ingredients:
        raise RuntimeError("Invalid food basket structure: no ingredients")
    return basket


def generate_food_basket(preferences: List[str], client: Optional[OpenAI] = None) -> FoodBasket:
    """
    Ask DeepSeek for a recipe basket.

    Args:
        preferences: e.g. ["vegetarian", "quick", "no nuts"]
        client: OpenAI-compatible client (defaults to the DeepSeek client)

    Raises:
        ValueError: If the API key is not configured
        RuntimeError: If the API call fails or returns an invalid basket
    """
    client = client or get_client()
    prompt = FOOD_BASKET_PROMPT.replace("<<PREFERENCES>>", ", ".join(preferences) or "none")

    try:
        response = client.chat.completions.create(
            model=DEEPSEEK_MODEL,
            messages=[
                {
                    "role": "system",
                    "content": "You are a helpful cooking assistant. Return only valid JSON, no markdown formatting or extra text."
                },
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
            stream=False
        )
        content = response.choices[0].message.content.strip()
    except Exception as e:
        raise RuntimeError(f"DeepSeek API call failed: {e}")

    basket = parse_food_basket(content)
    logger.info(f"✓ Generated food basket '{basket.name}' with {len(basket.ingredients)} ingredients")
    return basket


def match_basket_products(session: Session, basket: FoodBasket):
    """
    Find an in-stock product for each ingredient.

    Exact (case-insensitive) name matches win; otherwise the cheapest product
    whose name contains the ingredient is used.

    Returns:
        (matched [(ingredient, Product)], unmatched [ingredient])
    """
    from models import Product

    matched = []
    unmatched = []

    for ingredient in basket.ingredients:
        name = ingredient.name.strip()
        in_stock = session.query(Product).filter(Product.stock > 0)

        product = in_stock.filter(func.lower(Product.name) == name.lower()).first()
        if product is None:
            product = in_stock.filter(
                Product.name.ilike(f"%{name}%")
            ).order_by(Product.price).first()

        if product is None:
            unmatched.append(ingredient)
        else:
            matched.append((ingredient, product))

    logger.info(f"Matched {len(matched)}/{len(basket.ingredients)} basket ingredients to products")
    return matched, unmatched


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    basket = generate_food_basket(["vegetarian", "quick"])
    print(f"{basket.name}: {basket.description}")
    for item in basket.ingredients:
        print(f"  - {item.quantity} {item.unit} {item.name}")
