from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Optional

import uvicorn

from .config import Settings, UsageError, load_settings
from .errors import ConfigError, TemplateCompileError
from .pipeline import Pipeline, PipelineWorker
from .render import TemplateRenderer
from .repo import GitRepository
from .web import create_app

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

TEMPLATE_HELP = """\
details:
    <template>   The Jinja2 template file used to generate each update.
                 In the template, you have access to the following properties:
                   - Title          = The show title.
                   - Url            = The show URL. This will point to a tracker like AniList.
                   - ImageUrl       = The show's image URL. This will point to the show's cover art.
                   - TotalEps       = The total number of episodes in the show.
                   - WatchedEps     = The number of episodes the user has watched.
                   - Rewatching     = Whether or not the user is rewatching the show.
                   - CurrentEpisode = Information about the current episode.
                         This is an object with the following properties:
                           - Title  = The title of the episode.
                           - Number = The episode number.

    <target>     The file to write the filled in template to.
                 This file must be within <repo>.

    <repo>       The Git repository to commit and push.

    <remote>     The remote to push to (default: origin).
"""


class _UsageParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_help(sys.stderr)
        self.exit(1, f"\n{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _UsageParser(
        prog="taiga-updates",
        description="Publish Taiga 'now watching' updates to a git repository.",
        epilog=TEMPLATE_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("template", help="Template file")
    parser.add_argument("target", help="File to write, inside <repo>")
    parser.add_argument("repo", help="Git repository to commit and push")
    parser.add_argument("remote", nargs="?", default=None, help="Remote to push to")
    return parser


def configure_logging(settings: Settings) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file is not None:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, handlers=handlers, force=True)


def build_pipeline(settings: Settings) -> Pipeline:
    renderer = TemplateRenderer.from_file(settings.template)
    repo = GitRepository.open(settings.repo, settings.target)
    return Pipeline(renderer, PipelineWorker(repo, settings.remote))


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    try:
        settings = load_settings(args.template, args.target, args.repo, args.remote)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        pipeline = build_pipeline(settings)
    except (TemplateCompileError, ConfigError) as exc:
        print(exc, file=sys.stderr)
        return 1

    configure_logging(settings)
    logging.getLogger("taiga_updates").info("Listening on http://%s:%d/", settings.host, settings.port)
    uvicorn.run(create_app(pipeline), host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
