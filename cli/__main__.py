"""Entry point for the tutor policy CLI client."""

import argparse
import sys

import requests

from core.models import DIFFICULTY_LEVELS
from cli.api_client import TutorAPIClient
from cli.console import ConsoleUI


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Tutor policy - mastery and dialogue gating')
    parser.add_argument(
        '--server',
        default='http://localhost:8000',
        help='Server URL (default: http://localhost:8000)'
    )
    parser.add_argument(
        '--user',
        default='default',
        help='User ID (default: default)'
    )
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('status', help='Show mastery levels and recommended difficulty')

    attempt = commands.add_parser('attempt', help='Record a completed problem')
    attempt.add_argument('problem_id')
    attempt.add_argument('--difficulty', choices=[d.value for d in DIFFICULTY_LEVELS], default='easy')
    attempt.add_argument('--unsolved', action='store_true', help='The problem was abandoned')
    attempt.add_argument('--time-spent', type=float, default=0.0, help='Seconds spent')
    attempt.add_argument('--hints', type=int, default=0)
    attempt.add_argument('--incorrect', type=int, default=0)

    commands.add_parser('reset', help='Clear saved mastery history')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    client = TutorAPIClient(base_url=args.server, user_id=args.user)
    ui = ConsoleUI(client)

    try:
        if args.command == 'status':
            ui.show_status()
        elif args.command == 'attempt':
            ui.submit_attempt({
                'problem_id': args.problem_id,
                'difficulty': args.difficulty,
                'solved': not args.unsolved,
                'time_spent': args.time_spent,
                'hints_used': args.hints,
                'incorrect_attempts': args.incorrect
            })
        elif args.command == 'reset':
            ui.reset()
    except requests.RequestException as e:
        print(f'Error talking to {args.server}: {e}', file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
