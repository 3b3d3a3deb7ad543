# -*- coding: utf-8 -*-
"""
Interactive shell for archivenav.

    archivenav --systemimage bundle.zip

Commands: ls [PATH], cd PATH | cd .., cat FILE, pwd, exit.
Every command except exit accepts --help.
"""

from __future__ import annotations
import os, sys, enum, logging, argparse
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import BinaryIO, List, NamedTuple, Optional, TextIO

from archivenav import (
    ArchiveFormat,
    ArchiveNavError,
    ExtractionFailed,
    InvalidArgument,
    Session,
    UnsupportedFormat,
    open_session,
)

LOGGER_NAME = "archivenav"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

BANNER = "use command 'exit' to terminate program"
FAREWELL = "The program is finished"

logger = logging.getLogger("archivenav.shell")

# ----------------- logging -----------------

def _resolve_level(level_name: str) -> int:
    level = getattr(logging, level_name.upper(), None)
    if isinstance(level, int):
        return level
    return logging.WARNING


def _build_handler(destination: Optional[str], level: int) -> logging.Handler:
    # stdout is reserved for command output
    if destination and destination.lower() != "stderr":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def configure_logging(level: str = "WARNING", destination: Optional[str] = None) -> logging.Logger:
    root = logging.getLogger(LOGGER_NAME)
    numeric_level = _resolve_level(level)
    root.setLevel(numeric_level)
    root.propagate = False

    for handler in list(root.handlers):
        handler.close()
    root.handlers.clear()

    root.addHandler(_build_handler(destination, numeric_level))
    return root

# ----------------- commands -----------------

class CommandKind(enum.Enum):
    LIST = "ls"
    CHANGE_DIRECTORY_UP = "cd .."
    CHANGE_DIRECTORY_INTO = "cd"
    CAT = "cat"
    PRINT_WORKING_DIRECTORY = "pwd"
    EXIT = "exit"
    HELP = "--help"


class Command(NamedTuple):
    kind: CommandKind
    name: str
    arg: Optional[str] = None


HELP_TEXT = {
    "ls": "Usage: ls [PATH]\nList information about the FILEs (the current directory by default).",
    "cd": (
        "Usage: cd PATH\n"
        "Change the current directory to PATH, relative to the current directory.\n"
        "'cd ..' removes the last pathname component; it never goes above the archive root.\n"
        "'cd /' returns to the archive root."
    ),
    "cat": "Usage: cat FILE\nPrint FILE to standard output.",
    "pwd": "Usage: pwd\nPrint the name of the current working directory.",
}


def help_info(cmd: str) -> str:
    return HELP_TEXT.get(cmd, "unexpected command to help info")


def read_command(line: str) -> List[str]:
    """Whitespace-normalized tokens of one input line."""
    return line.split()


def parse_command(tokens: List[str]) -> Command:
    """Turn tokens into a Command. Raise InvalidArgument on bad syntax."""
    if not tokens:
        raise InvalidArgument("the command is empty")

    name, args = tokens[0], tokens[1:]
    if name == "ls":
        if not args:
            return Command(CommandKind.LIST, name)
        if len(args) > 1:
            raise InvalidArgument(f"unsupported arg: {' '.join(args)}")
        if args[0] == "--help":
            return Command(CommandKind.HELP, name)
        return Command(CommandKind.LIST, name, args[0])

    if name in ("cd", "cat"):
        if len(args) != 1:
            raise InvalidArgument(f"unsupported arg: {' '.join(args)}" if args else "unsupported arg")
        if args[0] == "--help":
            return Command(CommandKind.HELP, name)
        if name == "cat":
            return Command(CommandKind.CAT, name, args[0])
        if args[0] == "..":
            return Command(CommandKind.CHANGE_DIRECTORY_UP, name)
        return Command(CommandKind.CHANGE_DIRECTORY_INTO, name, args[0])

    if name == "pwd":
        if not args:
            return Command(CommandKind.PRINT_WORKING_DIRECTORY, name)
        if len(args) == 1 and args[0] == "--help":
            return Command(CommandKind.HELP, name)
        raise InvalidArgument(f'"{name}" does not support any args')

    if name == "exit":
        return Command(CommandKind.EXIT, name)

    raise InvalidArgument(f"unsupported command: {name}")


def render_listing(names: List[str]) -> str:
    if not names:
        return "[]"
    return "\n".join(["["] + [f"-{n}" for n in names] + ["]"])

# ----------------- shell -----------------

class Shell:
    """Read-eval-print loop over one Session."""

    def __init__(self, session: Session, stdin: TextIO, stdout: TextIO, binary_out: Optional[BinaryIO] = None):
        self.session = session
        self.stdin = stdin
        self.stdout = stdout
        self.binary_out = binary_out if binary_out is not None else stdout.buffer

    def prompt(self) -> str:
        return f"archivenav:{self.session.prompt_pwd()}$ "

    def _print(self, text: str) -> None:
        self.stdout.write(text + "\n")
        self.stdout.flush()

    def execute(self, cmd: Command) -> bool:
        """Run one command. Return False when the loop should stop."""
        kind = cmd.kind
        if kind is CommandKind.EXIT:
            return False
        if kind is CommandKind.HELP:
            self._print(help_info(cmd.name))
        elif kind is CommandKind.LIST:
            self._print(render_listing(self.session.ls(cmd.arg)))
        elif kind is CommandKind.CHANGE_DIRECTORY_UP:
            self.session.cd_up()
        elif kind is CommandKind.CHANGE_DIRECTORY_INTO:
            self.session.cd(cmd.arg)
        elif kind is CommandKind.PRINT_WORKING_DIRECTORY:
            self._print(self.session.pwd())
        elif kind is CommandKind.CAT:
            self.stdout.flush()
            self.session.cat(cmd.arg, self.binary_out)
            self.binary_out.flush()
        return True

    def run(self) -> None:
        """
        Loop until exit or end of input.

        Command errors are printed and the loop goes on. An OSError or
        undecodable input while reading stdin propagates to the caller.
        """
        while True:
            self.stdout.write(self.prompt())
            self.stdout.flush()
            line = self.stdin.readline()
            if not line:
                logger.debug("end of input")
                self._print("")
                return
            try:
                cmd = parse_command(read_command(line))
                if not self.execute(cmd):
                    return
            except ArchiveNavError as e:
                logger.debug("command failed: %s", e, exc_info=True)
                self._print(str(e))

# ----------------- cli -----------------

def parse_cli_args(argv: List[str]) -> argparse.Namespace:
    """Return parsed CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="archivenav",
        description="Browse a .zip or .tar archive with ls, cd, cat and pwd",
    )
    parser.add_argument(
        "--systemimage",
        default=os.getenv("ARCHIVENAV_SYSTEMIMAGE"),
        help="path to file system image. must have .zip or .tar extension",
    )
    parser.add_argument(
        "--workdir",
        default=os.getenv("ARCHIVENAV_WORKDIR", "."),
        help="directory in which the temporary extraction root is created",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("ARCHIVENAV_LOG_LEVEL", "WARNING").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=os.getenv("ARCHIVENAV_LOG_DESTINATION", "stderr"),
        help="stderr or a file path",
    )
    return parser.parse_args(argv)


def validate_archive_path(path: Optional[str]) -> ArchiveFormat:
    """Check that the archive exists and has a supported extension."""
    if not path:
        raise InvalidArgument("the path to the file system image is not set")
    if not os.path.exists(path):
        raise InvalidArgument(f'file "{path}" does not exist')
    try:
        return ArchiveFormat.from_path(path)
    except UnsupportedFormat as e:
        raise InvalidArgument("file extension must be .tar or .zip") from e


def main(
    argv: Optional[List[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    binary_out: Optional[BinaryIO] = None,
) -> int:
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)
    stdin = sys.stdin if stdin is None else stdin
    stdout = sys.stdout if stdout is None else stdout

    try:
        fmt = validate_archive_path(args.systemimage)
    except InvalidArgument as e:
        print(f"validation error: {e}", file=sys.stderr)
        return 2

    try:
        session = open_session(args.systemimage, fmt, workdir=args.workdir)
    except (UnsupportedFormat, ExtractionFailed, OSError) as e:
        logger.error("could not open %s: %s", args.systemimage, e)
        print(f"error: {e}", file=sys.stderr)
        return 1

    status = 0
    try:
        with session:
            stdout.write(BANNER + "\n")
            Shell(session, stdin, stdout, binary_out).run()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("error while reading: %s", e)
        print(f"error while reading: {e}", file=sys.stderr)
        status = 1
    finally:
        stdout.write(FAREWELL + "\n")
        stdout.flush()
    return status


if __name__ == "__main__":
    sys.exit(main())
