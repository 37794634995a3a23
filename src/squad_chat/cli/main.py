"""
Squad Chat CLI - Main entry point

This module provides the command-line interface for the Squad Chat client.
"""

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .. import __version__
from ..core.errors import ChatError, NotFound
from ..core.invites import build_invite_link, parse_invite_input
from ..core.models import Message, Participant
from ..core.storage import JsonFileStore, KeyringStore, KeyValueStore
from ..client.bucket import DEFAULT_POLL_INTERVAL, BucketRemote
from ..client.identity import IdentityStore
from ..client.reconciler import MessageStream
from ..client.rooms import RoomDirectory
from ..client.session import (
    DEFAULT_LOCATION,
    Screen,
    SessionController,
    format_countdown,
    time_until_cleanup,
)

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_DATA_PATH = './squad-chat-data'
DEFAULT_PROFILE = '~/.squad-chat/profile.json'

LOBBY_HELP = "/create NAME  /join CODE|LINK  /open N  /dismiss  /logout  /quit"
ROOM_HELP = "/back  /link  /dismiss  /quit  (anything else is sent)"


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )


def open_store(ctx) -> KeyValueStore:
    if ctx.obj['keyring']:
        return KeyringStore()
    return JsonFileStore(ctx.obj['profile'])


def open_remote(ctx) -> BucketRemote:
    remote = BucketRemote(ctx.obj['data_path'], poll_interval=ctx.obj['poll_interval'])
    logger.debug("Storage: %s", remote.get_storage_info())
    if not remote.is_initialized():
        console.print(
            f"[yellow]Chat data at {escape(str(remote.base_path))} is not initialized. "
            "Chat will not work until you run 'squad-chat init'.[/yellow]"
        )
    return remote


def format_message(message: Message, me: Optional[Participant]) -> Text:
    """One chat line; the participant's own messages are highlighted"""
    own = me is not None and message.is_from(me)
    timestamp = message.created_at.astimezone().strftime('%H:%M:%S')
    return Text.assemble(
        (timestamp, "dim"),
        " ",
        (message.sender_name or "anonymous", "bold cyan" if own else "bold"),
        ": ",
        message.content,
    )


@click.group()
@click.option('--data-path', '-d', default=DEFAULT_DATA_PATH, envvar='SQUAD_CHAT_DATA',
              show_default=True, help='Shared chat data directory')
@click.option('--profile', '-p', default=DEFAULT_PROFILE, envvar='SQUAD_CHAT_PROFILE',
              show_default=True, help='Local profile file (name, id, joined rooms)')
@click.option('--keyring', 'use_keyring', is_flag=True,
              help='Keep the local profile in the OS keyring instead of a file')
@click.option('--base-url', default=DEFAULT_LOCATION, envvar='SQUAD_CHAT_URL',
              show_default=True, help='Base address used for invite links')
@click.option('--poll-interval', default=DEFAULT_POLL_INTERVAL, type=float,
              show_default=True, help='Seconds between checks for new messages')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, data_path: str, profile: str, use_keyring: bool, base_url: str,
        poll_interval: float, verbose: bool):
    """Squad Chat - rooms, invite codes and live messages"""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['data_path'] = data_path
    ctx.obj['profile'] = Path(profile).expanduser()
    ctx.obj['keyring'] = use_keyring
    ctx.obj['base_url'] = base_url
    ctx.obj['poll_interval'] = poll_interval

    if verbose:
        console.print(f"[dim]Using data path: {escape(str(data_path))}[/dim]")


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize the shared chat data directory"""
    remote = BucketRemote(ctx.obj['data_path'])
    try:
        created = asyncio.run(remote.initialize())
    except ChatError as e:
        console.print(f"❌ {escape(str(e))}")
        sys.exit(1)
    if created:
        console.print(f"✅ Initialized chat data at {escape(str(remote.base_path))}")
    else:
        console.print(f"Chat data at {escape(str(remote.base_path))} is already initialized")


@cli.command()
@click.option('--invite', '-i', default=None, help='Invite link or code to join on start')
@click.pass_context
def chat(ctx, invite: Optional[str]):
    """Start interactive chat session"""
    location = ctx.obj['base_url']
    if invite:
        location = build_invite_link(location, parse_invite_input(invite))

    session = SessionController(open_remote(ctx), open_store(ctx), location=location)
    console.print(Panel.fit("💬 Squad Chat", style="bold magenta"))

    try:
        asyncio.run(ChatScreen(session).run())
    except ChatError as e:
        console.print(f"❌ Chat failed: {escape(str(e))}")
        sys.exit(1)
    console.print("\n👋 Goodbye!")


class ChatScreen:
    """Terminal rendering of a session's three screens"""

    def __init__(self, session: SessionController):
        self.session = session
        self._stream: Optional[MessageStream] = None
        self._printed = 0
        self._hinted = False

    async def read(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, input, prompt)

    async def run(self) -> None:
        session = self.session
        await session.start()
        try:
            while True:
                self.show_banner()
                self.follow_stream()
                try:
                    if session.screen is Screen.NAME_ENTRY:
                        done = await self.name_entry()
                    elif session.screen is Screen.LOBBY:
                        done = await self.lobby()
                    else:
                        done = await self.room()
                except EOFError:
                    done = True
                if done:
                    break
        finally:
            await session.reconciler.close()

    def show_banner(self) -> None:
        if self.session.banner:
            console.print(Panel(Text(self.session.banner), title="Problem",
                                subtitle="/dismiss", style="red"))

    def follow_stream(self) -> None:
        stream = self.session.stream
        if stream is self._stream:
            return
        self._stream = stream
        self._printed = 0
        self._hinted = False
        if stream is not None:
            room = self.session.current_room
            console.print(Panel.fit(
                Text(f"{room.name}\nInvite code: {room.invite_code}\n{self.session.share_link()}"),
                title="Room", style="bold green",
            ))
            console.print(f"[dim]{ROOM_HELP}[/dim]")
            stream.add_listener(self.render)
            if stream.ready:
                self.render(stream)
            else:
                console.print("[dim]Loading messages...[/dim]")

    def render(self, stream: MessageStream) -> None:
        if stream is not self._stream:
            return
        me = self.session.participant
        for message in stream.messages[self._printed:]:
            console.print(format_message(message, me))
        self._printed = len(stream.messages)
        if stream.ready and not stream.messages and not self._hinted:
            self._hinted = True
            console.print("[dim]No messages yet. Say hello![/dim]")

    async def name_entry(self) -> bool:
        name = await self.read("Enter your name: ")
        if name.strip() == '/quit':
            return True
        if not await self.session.submit_name(name):
            console.print("[yellow]A name is required[/yellow]")
        return False

    async def lobby(self) -> bool:
        session = self.session
        console.print(f"\nLogged in as [bold]{escape(session.participant.display_name)}[/bold]  "
                      f"[dim]messages are cleared in {format_countdown(time_until_cleanup())}[/dim]")
        if session.rooms:
            for index, room in enumerate(session.rooms, 1):
                console.print(f"  {index}. {escape(room.name)} [dim]({room.invite_code})[/dim]")
        else:
            console.print("  [dim]No rooms yet[/dim]")
        console.print(f"[dim]{LOBBY_HELP}[/dim]")

        command, _, arg = (await self.read("lobby> ")).strip().partition(' ')
        arg = arg.strip()
        if command == '/quit':
            return True
        if command == '/create':
            if not await session.create_room(arg):
                console.print("[yellow]Room was not created[/yellow]")
        elif command == '/join':
            if not await session.join_room(parse_invite_input(arg)):
                console.print("[yellow]Could not join that room[/yellow]")
        elif command == '/open':
            try:
                room = session.rooms[int(arg) - 1]
            except (ValueError, IndexError):
                console.print("[yellow]Pick a room number from the list[/yellow]")
            else:
                await session.enter_room(room)
        elif command == '/dismiss':
            session.dismiss_banner()
        elif command == '/logout':
            await session.logout()
        elif command:
            console.print(f"[yellow]Unknown command {escape(command)}[/yellow]")
        return False

    async def room(self) -> bool:
        session = self.session
        line = await self.read("")
        command = line.strip()
        if command == '/quit':
            return True
        if command == '/back':
            await session.leave_room()
        elif command == '/link':
            console.print(session.share_link())
        elif command == '/dismiss':
            session.dismiss_banner()
        else:
            await session.send(line)
            notice = session.take_notice()
            if notice:
                console.print(f"[red]✗ {escape(notice)}[/red]")
        return False


@cli.command()
@click.pass_context
def rooms(ctx):
    """List rooms created or joined from this profile"""
    directory = RoomDirectory(open_remote(ctx), open_store(ctx))
    my_rooms = directory.list_my_rooms()
    if not my_rooms:
        console.print("No rooms yet. Create one with 'squad-chat chat'.")
        return

    table = Table(title="My rooms")
    table.add_column("Name", style="bold")
    table.add_column("Code")
    table.add_column("Invite link", style="dim")
    for room in my_rooms:
        table.add_row(room.name, room.invite_code, build_invite_link(ctx.obj['base_url'], room.invite_code))
    console.print(table)


@cli.command()
@click.argument('code')
@click.option('--limit', '-l', default=20, help='Number of messages to show')
@click.pass_context
def history(ctx, code: str, limit: int):
    """Show recent messages of the room behind an invite code"""
    remote = open_remote(ctx)
    me = IdentityStore(open_store(ctx)).get_or_create_participant()

    async def show_history():
        room = await remote.fetch_room_by_invite_code(parse_invite_input(code))
        if room is None:
            raise NotFound()
        messages = await remote.fetch_messages(room.id, limit=limit)
        console.print(Panel.fit(Text(f"📜 Chat History: {room.name}"), style="bold cyan"))
        if not messages:
            console.print("No messages yet. Say hello!")
        for message in messages:
            console.print(format_message(message, me))

    try:
        asyncio.run(show_history())
    except ChatError as e:
        console.print(f"❌ {escape(str(e))}")
        sys.exit(1)


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show the participant identity of this profile"""
    participant = IdentityStore(open_store(ctx)).get_or_create_participant()
    console.print(f"Name: {escape(participant.display_name) or '[dim](not set)[/dim]'}")
    console.print(f"Participant id: {participant.participant_id}")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the display name (the participant id is kept)"""
    IdentityStore(open_store(ctx)).clear_display_name()
    console.print("✅ Logged out")


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Delete messages from previous UTC days"""
    remote = open_remote(ctx)
    try:
        removed = remote.purge_messages()
    except ChatError as e:
        console.print(f"❌ {escape(str(e))}")
        sys.exit(1)
    console.print(f"✅ Removed {removed} day(s) of messages")


@cli.command()
@click.option('--watch', '-w', is_flag=True, help='Keep updating every second')
def countdown(watch: bool):
    """Time left until the daily 00:00 UTC cleanup"""
    if not watch:
        console.print(format_countdown(time_until_cleanup()))
        return
    with Live(console=console, refresh_per_second=2) as live:
        while True:
            live.update(Text(f"Messages are cleared in {format_countdown(time_until_cleanup())}"))
            time.sleep(1)


@cli.command()
def version():
    """Show version information"""
    console.print(Panel.fit(f"Squad Chat v{__version__}", style="bold blue"))
    console.print("Multi-room chat with invite codes")
    console.print("Licensed under AGPLv3")


def main():
    """Main entry point"""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n👋 Goodbye!")
        sys.exit(0)
    except Exception as e:
        console.print(f"❌ Unexpected error: {escape(str(e))}")
        sys.exit(1)


if __name__ == '__main__':
    main()
