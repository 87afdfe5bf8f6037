"""
CLI commands for CallWatch administration.
"""

import argparse
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from callwatch.data.symbols import country_for
from callwatch.database.connection import Database
from callwatch.database.models import Post
from callwatch.database.repository import PostRepository, UsageRepository


def add_post(
    db: Database,
    owner_id: str,
    symbol: str,
    initial_price: float,
    exchange: str = "US",
    company_name: str = "",
    target_price: Optional[float] = None,
    stop_loss_price: Optional[float] = None,
) -> Post:
    """Add a new open post."""
    if target_price is not None and target_price == initial_price:
        raise ValueError("Target price must differ from the initial price")

    repo = PostRepository(db)
    post = Post(
        owner_id=owner_id,
        symbol=symbol.upper(),
        exchange=exchange.upper(),
        company_name=company_name,
        country=country_for(symbol, exchange),
        initial_price=initial_price,
        current_price=initial_price,
        target_price=target_price,
        stop_loss_price=stop_loss_price,
    )
    return repo.create(post)


def close_post(db: Database, post_id: int) -> Optional[Post]:
    """Close a post so it is no longer checked."""
    return PostRepository(db).close_post(post_id)


def usage_history(db: Database, owner_id: str, days: int = 30) -> list[tuple[str, int]]:
    """Recent daily usage for an owner."""
    return UsageRepository(db).get_history(owner_id, limit=days)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="CallWatch admin CLI")
    parser.add_argument("--db", default="data/callwatch.db", help="Database path")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Post commands
    post_parser = subparsers.add_parser("post", help="Post management")
    post_subparsers = post_parser.add_subparsers(dest="action")

    add_post_parser = post_subparsers.add_parser("add", help="Add post")
    add_post_parser.add_argument("--owner", required=True, help="Owner ID")
    add_post_parser.add_argument("--symbol", required=True, help="Symbol")
    add_post_parser.add_argument("--exchange", default="US", help="Exchange code")
    add_post_parser.add_argument("--company", default="", help="Company name")
    add_post_parser.add_argument("--price", type=float, required=True, help="Entry price")
    add_post_parser.add_argument("--target", type=float, help="Target price")
    add_post_parser.add_argument("--stop", type=float, help="Stop-loss price")

    list_post_parser = post_subparsers.add_parser("list", help="List posts")
    list_post_parser.add_argument("--owner", required=True, help="Owner ID")

    close_post_parser = post_subparsers.add_parser("close", help="Close post")
    close_post_parser.add_argument("--id", type=int, required=True, help="Post ID")

    # Usage commands
    usage_parser = subparsers.add_parser("usage", help="Price check usage")
    usage_subparsers = usage_parser.add_subparsers(dest="action")
    show_usage_parser = usage_subparsers.add_parser("show", help="Show usage")
    show_usage_parser.add_argument("--owner", required=True, help="Owner ID")
    show_usage_parser.add_argument("--days", type=int, default=30, help="Days to show")

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("migrate", help="Create missing tables")

    args = parser.parse_args()

    db = Database(args.db)
    db.initialize()

    if args.command == "post":
        if args.action == "add":
            post = add_post(
                db,
                owner_id=args.owner,
                symbol=args.symbol,
                exchange=args.exchange,
                company_name=args.company,
                initial_price=args.price,
                target_price=args.target,
                stop_loss_price=args.stop,
            )
            print(f"Created post with ID: {post.id}")
        elif args.action == "list":
            for post in PostRepository(db).list_by_owner(args.owner):
                state = "closed" if post.closed else post.status.value
                print(
                    f"ID: {post.id}, {post.symbol}.{post.exchange} ({state}) "
                    f"current {post.current_price}, target {post.target_price}, "
                    f"stop {post.stop_loss_price}, checks {len(post.price_checks)}"
                )
        elif args.action == "close":
            post = close_post(db, args.id)
            if post is None:
                print(f"Post {args.id} not found")
            else:
                print(f"Closed post {post.id}")

    elif args.command == "usage":
        if args.action == "show":
            for day, count in usage_history(db, args.owner, args.days):
                print(f"{day}: {count}")

    elif args.command == "db":
        if args.action == "migrate":
            db.initialize()
            print("Migrations applied")

    db.close()


if __name__ == "__main__":
    main()
