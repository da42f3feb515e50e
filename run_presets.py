#!/usr/bin/env python3
"""
🎯 Preset Seat Booking Scenarios
================================
Pre-configured booking runs, from a three-user smoke test to a ticket-drop
stampede.

Usage:
    python run_presets.py http://localhost:8080 smoke
    python run_presets.py http://localhost:8080 ticket-drop --report report.json
    python run_presets.py http://localhost:8080 stampede --i-know-what-im-doing
"""

import asyncio
import sys
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from booking_config import BookingConfig
from booking_stress_test import BookingStressTestEngine, configure_logging, parse_injection_profile

console = Console()

# =============================================================================
# PRESET CONFIGURATIONS
# =============================================================================

PRESETS = {
    # -------------------------------------------------------------------------
    # BASIC PRESETS
    # -------------------------------------------------------------------------
    "smoke": {
        "name": "🌱 Smoke Test",
        "description": "3 users at once, no pauses, polling",
        "config": {
            "enable_staggered_login": False,
            "enable_waiting_between_actions": False,
        },
        "injection": [{"type": "at_once", "users": 3}],
    },
    "smoke-ws": {
        "name": "🔌 Websocket Smoke Test",
        "description": "3 users at once over the seat websocket",
        "config": {
            "transport_mode": "push",
            "enable_staggered_login": False,
            "enable_waiting_between_actions": False,
        },
        "injection": [{"type": "at_once", "users": 3}],
    },
    "confirm": {
        "name": "✅ Full Journey",
        "description": "10 users, random seat counts, reservations confirmed",
        "config": {
            "fixed_booking_amount": -1,
            "enable_staggered_login": False,
            "enable_waiting_between_actions": False,
            "enable_skip_confirm_reservations": False,
        },
        "injection": [{"type": "at_once", "users": 10}],
    },

    # -------------------------------------------------------------------------
    # REALISTIC PRESETS
    # -------------------------------------------------------------------------
    "staggered": {
        "name": "🚶 Staggered Arrival",
        "description": "200 users logging in over 4 minutes, one-minute pauses",
        "config": {},
        "injection": [{"type": "at_once", "users": 200}],
    },
    "ramp": {
        "name": "📈 Steady Ramp",
        "description": "500 users ramped over 2 minutes, websocket updates",
        "config": {
            "transport_mode": "push",
            "enable_staggered_login": False,
        },
        "injection": [{"type": "ramp", "users": 500, "during": 120}],
    },

    # -------------------------------------------------------------------------
    # SPIKE PRESETS
    # -------------------------------------------------------------------------
    "ticket-drop": {
        "name": "🎟️ Ticket Drop",
        "description": "1000 users peaking 10s after sales open",
        "config": {
            "enable_staggered_login": False,
            "enable_waiting_between_actions": False,
        },
        "injection": [
            {"type": "nothing", "during": 5},
            {"type": "stress_peak", "users": 1000, "during": 20},
        ],
    },
    "stampede": {
        "name": "🐘 Stampede",
        "description": "5000 users at once, websocket, random seat counts",
        "dangerous": True,
        "config": {
            "transport_mode": "push",
            "fixed_booking_amount": -1,
            "enable_staggered_login": False,
            "enable_waiting_between_actions": False,
        },
        "injection": [{"type": "at_once", "users": 5000}],
    },
}


def print_presets():
    """Print all available presets."""
    console.print("\n[bold]Available Presets:[/bold]\n")

    categories = [
        ("Basic", ["smoke", "smoke-ws", "confirm"]),
        ("Realistic", ["staggered", "ramp"]),
        ("Spike", ["ticket-drop", "stampede"]),
    ]

    for category, preset_names in categories:
        console.print(f"[bold cyan]{category}:[/bold cyan]")
        for name in preset_names:
            preset = PRESETS[name]
            danger_flag = "[red]⚠️ DANGEROUS[/red] " if preset.get("dangerous") else ""
            console.print(f"  {name:<12} {preset['name']:<25} {danger_flag}- {preset['description']}")
        console.print("")


def build_preset_config(url: str, preset_name: str) -> BookingConfig:
    preset = PRESETS[preset_name]
    return BookingConfig.from_dict({
        **preset["config"],
        "base_url": url,
        "injection": preset["injection"],
    }).validate()


async def run_preset(
    url: str,
    preset_name: str,
    dangerous_confirmed: bool = False,
    report_path: Optional[str] = None,
):
    """Run a preset scenario."""
    if preset_name not in PRESETS:
        console.print(f"[red]Unknown preset: {preset_name}[/red]")
        print_presets()
        return

    preset = PRESETS[preset_name]

    # Safety check for dangerous presets
    if preset.get("dangerous") and not dangerous_confirmed:
        console.print(Panel(
            f"[bold red]⚠️  WARNING: {preset['name']} is DANGEROUS![/bold red]\n\n"
            f"{preset['description']}\n\n"
            f"[yellow]Only use on systems you own or have permission to test![/yellow]",
            title="⚠️ Dangerous Preset",
            border_style="red"
        ))
        if not Confirm.ask("Do you want to proceed?"):
            console.print("[dim]Cancelled.[/dim]")
            return

    console.print(Panel(
        f"[bold]{preset['name']}[/bold]\n\n{preset['description']}",
        title=f"Running Preset: {preset_name}",
        border_style="blue"
    ))

    config = build_preset_config(url, preset_name)
    engine = BookingStressTestEngine(config)
    await engine.run(parse_injection_profile(config.injection))
    engine.print_summary()

    if report_path:
        engine.generate_report(report_path)


def main():
    if len(sys.argv) < 2:
        console.print("[bold]Usage:[/bold] python run_presets.py <URL> [PRESET] [--i-know-what-im-doing] [--report FILE]")
        print_presets()
        return

    if len(sys.argv) == 2:
        if sys.argv[1] in ["--help", "-h", "help"]:
            print_presets()
            return
        console.print("[red]Please provide both URL and preset name[/red]")
        print_presets()
        return

    url = sys.argv[1]
    preset = sys.argv[2]
    dangerous_confirmed = "--i-know-what-im-doing" in sys.argv

    report_path = None
    for i, arg in enumerate(sys.argv):
        if arg == "--report" and i + 1 < len(sys.argv):
            report_path = sys.argv[i + 1]

    configure_logging("--verbose" in sys.argv)
    asyncio.run(run_preset(url, preset, dangerous_confirmed, report_path))


if __name__ == "__main__":
    main()
