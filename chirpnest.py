"""
ChirpNest Application

This is the main entry point for the ChirpNest client. It wires the session,
profile, feed, realtime and composer services together, owns their
mount/unmount lifecycle, and exposes them through a small command line.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from config import settings
from config.validators import validate_settings
from data.backend import SupabaseBackend
from data.models import FeedSource, Identity
from services.auth_service import AuthService
from services.composer import Composer
from services.feed_store import FeedStore
from services.profile_service import ProfileEnsurer, load_profile
from services.realtime import RealtimeReconciler
from services.session import SessionResolver
from utils.exceptions import BackendConnectionError, ChirpNestError, ConfigurationError
from utils.logger import get_logger, setup_file_logging
from utils.notifier import Notification, Notifier
from views.profile_card import render_composer, render_profile_card
from views.timeline import render_timeline

logger = get_logger(__name__)


class ChirpNestApp:
    """
    Main application class for ChirpNest.

    Mounting acquires the session subscription, the profile check and the
    realtime channel; unmounting releases all of them.
    """

    def __init__(
        self,
        backend: Optional[Any] = None,
        notifier: Optional[Notifier] = None,
        source: FeedSource = FeedSource.EVERYONE,
        validate: bool = True
    ):
        """Initialize the application, optionally with injected collaborators."""
        if validate:
            validate_settings()

        self.notifier = notifier or Notifier()
        self.backend = backend or SupabaseBackend()
        self.session = SessionResolver(self.backend)
        self.profiles = ProfileEnsurer(self.backend)
        self.store = FeedStore(self.backend, self.notifier, source=source)
        self.reconciler = RealtimeReconciler(self.backend, self.store, self.notifier)
        self.composer = Composer(self.backend, self.notifier, on_chirp=self.store.load_first_page)
        self.auth = AuthService(self.backend, self.notifier)

        self.mounted = False
        self._tasks: Set[asyncio.Task] = set()
        self._remove_listener: Optional[Callable[[], None]] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def mount(self, load_feed: bool = True) -> None:
        """
        Connect, resolve the session and, unless load_feed is False, load the
        feed and start realtime updates.

        Raises:
            BackendConnectionError: If the backend client cannot be created.
        """
        if self.mounted:
            return
        if not await self.backend.connect():
            raise BackendConnectionError("Could not connect to the backend")

        self.mounted = True
        self.profiles.reset()
        self._remove_listener = self.session.add_listener(self._on_identity_change)
        await self.session.start()

        if self.identity is None and settings.CHIRPNEST_EMAIL and settings.CHIRPNEST_PASSWORD:
            identity = await self.auth.sign_in(settings.CHIRPNEST_EMAIL, settings.CHIRPNEST_PASSWORD)
            if identity is not None:
                self.session.update(identity)

        if load_feed:
            await self.store.refresh()
            await self.reconciler.activate()

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False

        await self.reconciler.deactivate()
        await self.profiles.cancel()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self.session.stop()
        await self.backend.close()

    async def __aenter__(self) -> "ChirpNestApp":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_identity_change(self, identity: Optional[Identity]) -> None:
        self.profiles.schedule(identity)
        if identity == self.store.identity:
            return
        self.store.set_identity(identity)
        # During mount() the feed is loaded explicitly afterwards.
        if self.reconciler.active:
            self._spawn(self.store.refresh())

    # =========================================================================
    # Intents
    # =========================================================================

    async def change_filter(self, source: FeedSource) -> bool:
        """Switch feed source, reload it and re-subscribe realtime updates."""
        await self.reconciler.deactivate()
        self.store.set_source(source)
        loaded = await self.store.load_first_page()
        await self.reconciler.activate()
        return loaded

    async def load_pages(self, pages: int) -> int:
        """Load up to pages pages in total; returns how many are loaded."""
        loaded = 1
        while loaded < pages and self.store.has_more:
            if not await self.store.load_next_page():
                break
            loaded += 1
        return loaded

    async def post(self, text: str) -> bool:
        """Put text in the composer and submit it."""
        self.composer.update_draft(text)
        if not self.composer.can_submit:
            self.notifier.error("Nothing to post")
            return False
        return await self.composer.submit(self.identity)

    async def toggle_like(self, post_id: str) -> bool:
        return await self.store.toggle_like(post_id)

    async def toggle_save(self, post_id: str) -> bool:
        return await self.store.toggle_save(post_id)

    async def delete_post(self, post_id: str) -> bool:
        return await self.store.delete_post(post_id)

    async def watch(self, seconds: float, output: Callable[[str], None] = print) -> None:
        """Print live notifications for a while, then the refreshed timeline."""
        unsubscribe = self.notifier.subscribe(lambda n: output(format_notification(n)))
        try:
            await asyncio.sleep(seconds)
        finally:
            unsubscribe()
        output(render_timeline(self.store))


def format_notification(notification: Notification) -> str:
    marker = {"success": "✔", "error": "✖"}.get(notification.level, "•")
    return f"{marker} {notification.message}"


# =============================================================================
# Command line
# =============================================================================

SOURCE_COMMANDS = {
    "mine": FeedSource.MINE,
    "saved": FeedSource.SAVED,
}

AUTH_COMMANDS = {"login", "signup", "oauth", "logout", "profile"}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="chirpnest", description="ChirpNest social feed client")
    parser.add_argument('--log-file', type=str, nargs='?', const=settings.DEFAULT_LOG_FILE, default=None,
                        help='Also log to a file (default path: chirpnest.log)')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=settings.LOG_LEVEL, help='Logging level')
    sub = parser.add_subparsers(dest="command", required=True)

    timeline = sub.add_parser("timeline", help="Show the global timeline")
    timeline.add_argument('--following', action='store_true', help='Only authors you follow')
    timeline.add_argument('--pages', type=int, default=1, help='Number of pages to load')

    for name, help_text in (("mine", "Show your posts"), ("saved", "Show posts you saved")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument('--pages', type=int, default=1, help='Number of pages to load')

    post = sub.add_parser("post", help="Publish a chirp")
    post.add_argument("text", help="Chirp content")

    for name, help_text in (("like", "Like or unlike a post"),
                            ("save", "Save or unsave a post"),
                            ("delete", "Delete one of your posts")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("post_id", help="Post id")

    watch = sub.add_parser("watch", help="Follow the timeline live")
    watch.add_argument('--seconds', type=float, default=settings.WATCH_SECONDS, help='How long to watch')

    sub.add_parser("profile", help="Show your profile card")

    login = sub.add_parser("login", help="Check email/password credentials")
    login.add_argument('--email', default=settings.CHIRPNEST_EMAIL)
    login.add_argument('--password', default=None)

    signup = sub.add_parser("signup", help="Create an account")
    signup.add_argument('--email', required=True)
    signup.add_argument('--username', required=True)

    oauth = sub.add_parser("oauth", help="Sign in with a third-party provider")
    oauth.add_argument("provider", choices=settings.OAUTH_PROVIDERS)

    sub.add_parser("logout", help="Sign out")
    return parser.parse_args(argv)


def source_for(args: argparse.Namespace) -> FeedSource:
    if args.command in SOURCE_COMMANDS:
        return SOURCE_COMMANDS[args.command]
    if getattr(args, "following", False):
        return FeedSource.FOLLOWING
    return FeedSource.EVERYONE


async def _show_feed(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    await app.load_pages(max(1, args.pages))
    print(render_timeline(app.store))
    return app.store.error is None


async def _post(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    print(render_composer(app.composer.update_draft(args.text)))
    return await app.post(args.text)


async def _like(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    return await app.toggle_like(args.post_id)


async def _save(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    return await app.toggle_save(args.post_id)


async def _delete(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    return await app.delete_post(args.post_id)


async def _watch(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    print(render_timeline(app.store))
    await app.watch(args.seconds)
    return True


async def _profile(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    if app.identity is None:
        app.notifier.error("Sign in to view your profile")
        return False
    print(render_profile_card(await load_profile(app.backend, app.identity.id)))
    return True


async def _login(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    email = args.email or input("Email: ")
    password = args.password or getpass.getpass("Password: ")
    return await app.auth.sign_in(email, password) is not None


async def _signup(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if not await app.auth.sign_up(args.email, password, confirm, args.username):
        if app.auth.error:
            app.notifier.error(app.auth.error)
        return False
    return True


async def _oauth(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    url = await app.auth.sign_in_with_provider(args.provider)
    if url is None:
        return False
    print(f"Open this URL to continue signing in: {url}")
    return True


async def _logout(app: ChirpNestApp, args: argparse.Namespace) -> bool:
    return await app.auth.sign_out()


COMMANDS: Dict[str, Callable[[ChirpNestApp, argparse.Namespace], Coroutine[Any, Any, bool]]] = {
    "timeline": _show_feed,
    "mine": _show_feed,
    "saved": _show_feed,
    "post": _post,
    "like": _like,
    "save": _save,
    "delete": _delete,
    "watch": _watch,
    "profile": _profile,
    "login": _login,
    "signup": _signup,
    "oauth": _oauth,
    "logout": _logout,
}


async def run_command(args: argparse.Namespace, app: Optional[ChirpNestApp] = None) -> int:
    """
    Mount the application, run one command and unmount.

    Returns:
        int: 0 on success, 1 if the command reported a failure.
    """
    app = app or ChirpNestApp(source=source_for(args))
    try:
        await app.mount(load_feed=args.command not in AUTH_COMMANDS)
        success = await COMMANDS[args.command](app, args)
    finally:
        await app.unmount()
        for notification in app.notifier.drain():
            print(format_notification(notification))
    return 0 if success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    log_level = getattr(logging, args.log_level)
    setup_file_logging(args.log_file, log_level)
    logger.debug(f"Configuration: {settings.get_config_summary()}")

    try:
        exit_code = asyncio.run(run_command(args))
    except ConfigurationError as e:
        logger.error(str(e))
        exit_code = 2
    except ChirpNestError as e:
        logger.error(f"ChirpNest error: {e}", exc_info=True)
        exit_code = 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 130
    except Exception as e:
        logger.error(f"Unhandled exception in ChirpNest: {e}", exc_info=True)
        exit_code = 2

    logger.debug(f"ChirpNest finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
