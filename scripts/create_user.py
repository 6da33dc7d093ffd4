import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from skillswap.config import load_settings
from skillswap.database import MIN_PASSWORD_LENGTH, Database, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a SkillSwap user")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to the configured database path)",
    )
    parser.add_argument(
        "--skill-offered",
        dest="skills_offered",
        action="append",
        default=[],
        help="Skill the user offers (repeatable)",
    )
    parser.add_argument(
        "--skill-wanted",
        dest="skills_wanted",
        action="append",
        default=[],
        help="Skill the user wants to learn (repeatable)",
    )
    parser.add_argument("--private", action="store_true", help="Hide the profile from the public directory")
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    if args.db_path:
        db_path = resolve_database_path(args.db_path)
    else:
        db_path = load_settings().database_path

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(args.name.strip(), args.email.strip().lower(), password)
        if args.skills_offered or args.skills_wanted or args.private:
            user = database.update_user_profile(
                user.id,
                skills_offered=args.skills_offered,
                skills_wanted=args.skills_wanted,
                is_public=not args.private,
            )
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    if user.skills_offered:
        print(f"Offers: {', '.join(user.skills_offered)}")
    if user.skills_wanted:
        print(f"Wants: {', '.join(user.skills_wanted)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
