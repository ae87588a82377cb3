#!/usr/bin/env python3
"""Helpdesk CLI.

Usage:
    helpdesk tickets [--status S] [--priority P] [--search TEXT] - List tickets
    helpdesk show ID                     - Show a ticket with its comments
    helpdesk create TITLE -d TEXT        - Open a new ticket
    helpdesk status ID STATUS            - Change ticket status
    helpdesk priority ID PRIORITY [-r]   - Change priority with a reason
    helpdesk assign ID USER_ID           - Assign a ticket (admins)
    helpdesk comment ID TEXT             - Comment on a ticket
    helpdesk delete ID                   - Delete a ticket
    helpdesk dashboard                   - Ticket metrics
    helpdesk notifications [--unread]    - Your notifications
    helpdesk read-all                    - Mark all notifications as read
    helpdesk webhooks                    - List your webhooks
    helpdesk test-webhook ID             - Send a sample payload to a webhook
"""

import os
import sys
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

API_BASE = os.getenv("HELPDESK_API_URL", "http://localhost:8000")
API_KEY = os.getenv("HELPDESK_API_KEY", "")

STATUS_CHOICES = ["open", "in_progress", "resolved", "closed"]
PRIORITY_CHOICES = ["low", "medium", "high", "critical"]
CATEGORY_CHOICES = ["software", "hardware", "network", "other"]

PRIORITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "green",
}
STATUS_STYLES = {
    "open": "cyan",
    "in_progress": "blue",
    "resolved": "green",
    "closed": "dim",
}

console = Console()


def _handle_api_error(error: Exception, endpoint: str) -> None:
    """Handle API errors with user-friendly messages."""
    console.print()
    if isinstance(error, httpx.ConnectError):
        console.print("[red]⚠️  Cannot connect to the Helpdesk API[/red]")
        console.print(f"[dim]Tried: {API_BASE}{endpoint}[/dim]")
        console.print("[dim]Check that the server is running and HELPDESK_API_URL is correct.[/dim]")
    elif isinstance(error, httpx.TimeoutException):
        console.print("[red]⚠️  Request timed out[/red]")
    elif isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        try:
            detail = error.response.json().get("detail")
        except ValueError:
            detail = None
        if status == 401:
            console.print("[red]⚠️  Invalid or missing API key[/red]")
            console.print("[dim]Set HELPDESK_API_KEY to a key issued by an administrator.[/dim]")
        elif status >= 500:
            console.print(f"[red]⚠️  Server error: {detail or f'HTTP {status}'}[/red]")
        else:
            console.print(f"[red]⚠️  {detail or f'API Error: HTTP {status}'}[/red]")
    else:
        console.print(f"[red]⚠️  Unexpected error: {error}[/red]")
    sys.exit(1)


def _request(method: str, endpoint: str, data: Optional[dict] = None, params=None):
    try:
        response = httpx.request(
            method,
            f"{API_BASE}{endpoint}",
            json=data,
            params=params,
            headers={"X-API-Key": API_KEY},
            timeout=30,
        )
        response.raise_for_status()
        return response.json() if response.content else None
    except Exception as e:
        _handle_api_error(e, endpoint)


def api_get(endpoint: str, params: Optional[dict] = None):
    """Make GET request to API."""
    return _request("GET", endpoint, params=params)


def api_post(endpoint: str, data: Optional[dict] = None):
    """Make POST request to API."""
    return _request("POST", endpoint, data=data or {})


def api_delete(endpoint: str):
    return _request("DELETE", endpoint)


def short_id(ticket_id: str) -> str:
    return ticket_id[:8]


def resolve_ticket_id(ticket_id: str) -> str:
    """Accept a full id or the 8-character prefix shown in listings."""
    if len(ticket_id) >= 32:
        return ticket_id
    matches = [t["id"] for t in api_get("/tickets") if t["id"].startswith(ticket_id)]
    if len(matches) != 1:
        console.print(f"[red]⚠️  No unique ticket matches '{ticket_id}'[/red]")
        sys.exit(1)
    return matches[0]


def format_ticket(ticket: dict) -> Panel:
    """Format a ticket as a rich Panel."""
    content = Text()
    priority = ticket.get("priority", "")
    status = ticket.get("status", "")
    content.append(f"{status}", style=STATUS_STYLES.get(status, ""))
    content.append(" | ", style="dim")
    content.append(f"{priority}", style=PRIORITY_STYLES.get(priority, ""))
    content.append(f" | {ticket.get('category', '')}", style="dim")
    if ticket.get("time_remaining"):
        style = "red" if ticket.get("overdue") else "cyan"
        content.append(f" | {ticket['time_remaining']}", style=style)
    content.append("\n\n")
    content.append(ticket.get("description", ""))
    content.append("\n")

    if ticket.get("assigned_to_name"):
        content.append(f"\nAssigned to: {ticket['assigned_to_name']}", style="magenta")
    if ticket.get("task_id"):
        content.append(f"\nClickUp task: {ticket['task_id']}", style="dim")

    for comment in ticket.get("comments", []):
        content.append(
            f"\n\n{comment.get('user_name') or comment['user_id']}", style="bold"
        )
        content.append(f" ({comment['created_at'][:16]})\n", style="dim")
        content.append(comment["content"])

    return Panel(
        content,
        title=f"[bold]{ticket.get('title', 'Untitled')}[/bold]",
        subtitle=f"[dim]{short_id(ticket.get('id', '?'))}[/dim]",
        border_style=PRIORITY_STYLES.get(priority, "blue").split()[-1],
    )


@click.group()
def cli():
    """Helpdesk - IT support tickets from the terminal."""
    pass


@cli.command()
@click.option("--status", "-s", type=click.Choice(STATUS_CHOICES + ["all"]), default="all")
@click.option("--priority", "-p", type=click.Choice(PRIORITY_CHOICES + ["all"]), default="all")
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES + ["all"]), default="all")
@click.option("--search", "-q", help="Search title and description")
def tickets(status: str, priority: str, category: str, search: Optional[str]):
    """List tickets, newest first."""
    params = {"status": status, "priority": priority, "category": category}
    if search:
        params["search"] = search
    data = api_get("/tickets", params=params)

    if not data:
        console.print("[dim]No tickets found.[/dim]")
        return

    table = Table(title="Tickets")
    table.add_column("ID", style="dim", width=8)
    table.add_column("Title", style="bold")
    table.add_column("Status", width=12)
    table.add_column("Priority", width=9)
    table.add_column("Deadline", width=10)
    table.add_column("Assignee", width=16)

    for ticket in data:
        table.add_row(
            short_id(ticket["id"]),
            ticket["title"][:50],
            f"[{STATUS_STYLES.get(ticket['status'], '')}]{ticket['status']}[/]",
            f"[{PRIORITY_STYLES.get(ticket['priority'], '')}]{ticket['priority']}[/]",
            ticket.get("time_remaining") or "-",
            ticket.get("assigned_to_name") or "-",
        )

    console.print(table)


@cli.command()
@click.argument("ticket_id")
def show(ticket_id: str):
    """Show a ticket with its comments."""
    ticket = api_get(f"/tickets/{resolve_ticket_id(ticket_id)}")
    console.print()
    console.print(format_ticket(ticket))
    console.print()


@cli.command()
@click.argument("title")
@click.option("--description", "-d", required=True, help="What is wrong (10+ chars)")
@click.option("--category", "-c", type=click.Choice(CATEGORY_CHOICES), default="other")
@click.option("--priority", "-p", type=click.Choice(PRIORITY_CHOICES), default="medium")
def create(title: str, description: str, category: str, priority: str):
    """Open a new ticket."""
    with console.status("[bold blue]Creating ticket...", spinner="dots"):
        ticket = api_post(
            "/tickets",
            {
                "title": title,
                "description": description,
                "category": category,
                "priority": priority,
            },
        )

    console.print()
    console.print(f"[green]✓[/green] Ticket {short_id(ticket['id'])} created")
    if ticket.get("time_remaining"):
        console.print(f"[dim]Deadline in {ticket['time_remaining']}[/dim]")
    console.print()


@cli.command()
@click.argument("ticket_id")
@click.argument("status", type=click.Choice(STATUS_CHOICES))
def status(ticket_id: str, status: str):
    """Change a ticket's status."""
    ticket = api_post(f"/tickets/{resolve_ticket_id(ticket_id)}/status", {"status": status})
    console.print(f"[green]✓[/green] {ticket['title'][:40]} is now {ticket['status']}")


@cli.command()
@click.argument("ticket_id")
@click.argument("priority", type=click.Choice(PRIORITY_CHOICES))
@click.option("--reason", "-r", help="Why the priority changes")
def priority(ticket_id: str, priority: str, reason: Optional[str]):
    """Change a ticket's priority; the deadline is recomputed."""
    ticket_id = resolve_ticket_id(ticket_id)
    if not reason:
        current = api_get(f"/tickets/{ticket_id}")["priority"]
        hints = api_get(
            "/tickets/priority-suggestions", params={"current": current, "new": priority}
        )
        for suggestion in hints.get("suggestions", []):
            console.print(f"[dim]  • {suggestion}[/dim]")
        reason = click.prompt(hints.get("placeholder") or "Reason", default="")

    ticket = api_post(
        f"/tickets/{ticket_id}/priority", {"priority": priority, "reason": reason or None}
    )
    console.print(
        f"[green]✓[/green] Priority set to {ticket['priority']} "
        f"(deadline {ticket.get('time_remaining') or '-'})"
    )


@cli.command()
@click.argument("ticket_id")
@click.argument("user_id")
def assign(ticket_id: str, user_id: str):
    """Assign a ticket to a user (administrators only)."""
    ticket = api_post(
        f"/tickets/{resolve_ticket_id(ticket_id)}/assign", {"assigned_to_id": user_id}
    )
    console.print(f"[green]✓[/green] Assigned to {ticket.get('assigned_to_name')}")


@cli.command()
@click.argument("ticket_id")
@click.argument("text")
def comment(ticket_id: str, text: str):
    """Comment on a ticket."""
    api_post(f"/tickets/{resolve_ticket_id(ticket_id)}/comments", {"content": text})
    console.print("[green]✓[/green] Comment added")


@cli.command()
@click.argument("ticket_id")
@click.confirmation_option(prompt="Delete this ticket?")
def delete(ticket_id: str):
    """Delete a ticket."""
    api_delete(f"/tickets/{resolve_ticket_id(ticket_id)}")
    console.print("[green]✓[/green] Ticket deleted")


@cli.command()
def dashboard():
    """Ticket metrics."""
    data = api_get("/dashboard")

    hours = data["avg_resolution_time"] / 3600
    variation = data["ticket_variation"]
    trend = "[red]▲[/red]" if variation > 0 else "[green]▼[/green]" if variation < 0 else "="

    console.print()
    console.print(
        Panel(
            f"Total: [bold]{data['total_tickets']}[/bold]  "
            f"Open: [cyan]{data['open_tickets']}[/cyan]  "
            f"Resolved: [green]{data['resolved_tickets']}[/green]  "
            f"Overdue: [red]{data['overdue_tickets']}[/red]\n"
            f"Avg resolution: {hours:.1f}h  |  Last 7 days: {trend} {variation:.0f}%",
            title="[bold]Dashboard[/bold]",
        )
    )

    table = Table(show_header=False, box=None)
    for row in data["status_data"]:
        table.add_row(row["name"], str(row["value"]))
    for row in data["category_data"]:
        table.add_row(row["name"], str(row["count"]))
    console.print(table)
    console.print()


@cli.command()
@click.option("--unread", is_flag=True, help="Only unread notifications")
def notifications(unread: bool):
    """Show your notifications."""
    data = api_get("/notifications", params={"unread_only": unread})
    if not data:
        console.print("[dim]No notifications.[/dim]")
        return

    for item in data:
        marker = "[dim]·[/dim]" if item["read"] else "[bold cyan]•[/bold cyan]"
        console.print(f"{marker} {item['message']} [dim]{item['created_at'][:16]}[/dim]")


@cli.command("read-all")
def read_all():
    """Mark all notifications as read."""
    data = api_post("/notifications/read-all")
    console.print(f"[green]✓[/green] {data['count']} notifications marked as read")


@cli.command()
def webhooks():
    """List your webhooks."""
    data = api_get("/webhooks")
    if not data:
        console.print("[dim]No webhooks configured.[/dim]")
        return

    table = Table(title="Webhooks")
    table.add_column("ID", style="dim", width=8)
    table.add_column("Name", style="bold")
    table.add_column("URL")
    table.add_column("Events")
    table.add_column("Active", width=6)

    for webhook in data:
        table.add_row(
            webhook["id"][:8],
            webhook["name"],
            webhook["url"],
            ", ".join(webhook["events"]),
            "[green]yes[/green]" if webhook["active"] else "[dim]no[/dim]",
        )
    console.print(table)


@cli.command("test-webhook")
@click.argument("webhook_id")
def test_webhook(webhook_id: str):
    """Send a sample payload to a webhook's test URL."""
    if len(webhook_id) < 32:
        matches = [w["id"] for w in api_get("/webhooks") if w["id"].startswith(webhook_id)]
        if len(matches) != 1:
            console.print(f"[red]⚠️  No unique webhook matches '{webhook_id}'[/red]")
            sys.exit(1)
        webhook_id = matches[0]

    with console.status("[bold blue]Sending test payload...", spinner="dots"):
        result = api_post(f"/webhooks/{webhook_id}/test")

    console.print(f"[green]✓[/green] {result['url']} answered HTTP {result['status_code']}")
    if result.get("response"):
        console.print(f"[dim]{result['response']}[/dim]")


if __name__ == "__main__":
    cli()
