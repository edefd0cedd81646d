#!/usr/bin/env python3
"""Ad hoc query runner for KitchenPal.

Send one message through the chat pipeline without starting the API server.

Usage:
    python query.py "What can I make with chicken and rice?"
    python query.py --debug "Your query"  # Show the full JSON turn
    python query.py --image images/fridge.jpg "What can I make?"  # Detect ingredients first
    python query.py --suggest "chicken, rice, broccoli"  # Ingredient-based suggestions

Features:
- Direct pipeline execution, same providers and hooks as the server
- Formatted markdown response
- Debug mode to display the full JSON response
- Image support: ingredients recognised by the vision model are appended to the message
"""

import asyncio
import base64
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markdown import Markdown

from kitchenpal.api.factory import build_services
from kitchenpal.models.models import VisionMode
from kitchenpal.services.errors import ServiceError
from kitchenpal.services.vision import InvalidImageError
from kitchenpal.utils.config import config
from kitchenpal.utils.logger import logger

console = Console()

USAGE = 'Usage: python query.py [--debug] [--image PATH] [--suggest] "<your query>"'


def _print_debug(data: dict) -> None:
    console.print("[bold cyan]Debug Mode: Full Response[/bold cyan]")
    console.print("[dim]" + "=" * 60 + "[/dim]")
    console.print_json(data=data)
    console.print("[dim]" + "=" * 60 + "[/dim]")
    console.print()


async def _detect_ingredients(services, image_path: str) -> list[str]:
    image_file = Path(image_path)
    if not image_file.exists():
        console.print(f"[red]✗ Error: Image file not found: {image_path}[/red]")
        sys.exit(1)

    image_data = base64.b64encode(image_file.read_bytes()).decode("utf-8")
    logger.info(f"✓ Loaded image: {image_file.name} ({len(image_data) / 1024:.1f} KB base64)")
    result = await services.vision.analyze(image_data, mode=VisionMode.INGREDIENTS)
    ingredients = result.ingredients or []
    console.print(f"[green]Detected ingredients:[/green] {', '.join(ingredients) or 'none'}")
    return ingredients


async def run_query(query: str, debug: bool = False, image_path: Optional[str] = None, suggest: bool = False) -> None:
    """Execute a single query and print the response."""
    services = build_services(config)
    detected = await _detect_ingredients(services, image_path) if image_path else []

    if suggest:
        ingredients = [item.strip() for item in query.split(",") if item.strip()] + detected
        result = await services.chat.suggest_recipes(ingredients)
        console.print()
        if debug:
            _print_debug(result.model_dump(mode="json", by_alias=True))
        for recipe in result.recipes:
            steps = "\n".join(f"{index}. {step}" for index, step in enumerate(recipe.instructions, start=1))
            console.print(Markdown(f"## {recipe.name}\n\n{recipe.description}\n\n{steps}"))
        return

    turn = await services.chat.send_message(query, detected_ingredients=detected)
    console.print()
    if debug:
        _print_debug(
            {
                "conversationId": turn.conversation_id,
                "messageId": turn.message_id,
                "response": turn.response.model_dump(mode="json", by_alias=True),
                "metadata": turn.metadata,
            }
        )

    if turn.response.content:
        console.print(Markdown(turn.response.content))
    else:
        console.print("[yellow]No response text found[/yellow]")
    for option in turn.response.recipe_options or []:
        console.print(f"[bold]• {option.name}[/bold] [dim]({option.estimated_time}, {option.difficulty.value})[/dim]")
    if turn.response.quick_replies:
        console.print("[dim]Suggestions: " + " | ".join(reply.label for reply in turn.response.quick_replies) + "[/dim]")


def main(argv: list[str]) -> int:
    debug_mode = False
    suggest_mode = False
    image_path = None
    index = 0

    while index < len(argv) and argv[index].startswith("--"):
        flag = argv[index]
        if flag == "--debug":
            debug_mode = True
        elif flag == "--suggest":
            suggest_mode = True
        elif flag == "--image":
            index += 1
            if index >= len(argv):
                print("Error: --image flag requires a file path")
                return 1
            image_path = argv[index]
        else:
            print(f"Unknown flag: {flag}")
            return 1
        index += 1

    if index >= len(argv):
        print("Error: No query provided")
        print(USAGE)
        return 1

    query = " ".join(argv[index:])
    try:
        asyncio.run(run_query(query, debug=debug_mode, image_path=image_path, suggest=suggest_mode))
    except KeyboardInterrupt:
        logger.info("Query interrupted by user.")
    except (ServiceError, InvalidImageError, ValueError) as e:
        message = e.user_message if isinstance(e, ServiceError) else str(e)
        console.print(f"[red]✗ {message}[/red]")
        logger.error(f"Query execution failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(USAGE)
        print("")
        print("Examples:")
        print('  python query.py "What can I make with chicken and rice?"')
        print('  python query.py --debug "Something quick and vegetarian"')
        print('  python query.py --image images/fridge.jpg "What can I make with these?"')
        print('  python query.py --suggest "chicken, rice, broccoli"')
        sys.exit(1)
    sys.exit(main(sys.argv[1:]))
