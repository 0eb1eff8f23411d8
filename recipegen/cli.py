"""Flask CLI commands for admin operations."""
import click
from flask import current_app


def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables (development; use `flask db upgrade` elsewhere)."""
        from recipegen.extensions import db

        db.create_all()
        click.echo(
            f"Database initialized at {current_app.config['SQLALCHEMY_DATABASE_URI']}."
        )

    @app.cli.command("generate")
    @click.argument("count", type=int)
    @click.option("--meal-type", "meal_types", multiple=True, help="Repeatable")
    @click.option("--dietary", default="", help="Comma-separated constraints")
    @click.option("--focus-ingredient", default=None)
    @click.option("--no-images", is_flag=True, help="Skip image generation")
    @click.option(
        "--background",
        is_flag=True,
        help="Enqueue on the worker queue instead of running here",
    )
    def generate(count, meal_types, dietary, focus_ingredient, no_images, background):
        """Generate COUNT recipes as one batch."""
        from pydantic import ValidationError
        from recipegen.schemas import GenerationRequest
        from recipegen.extensions import db
        from recipegen.services import batch_service
        from recipegen.workers.batch_generation import run_batch

        try:
            request = GenerationRequest(
                count=count,
                meal_types=list(meal_types),
                dietary_constraints=dietary,
                focus_ingredient=focus_ingredient,
                generate_images=not no_images,
            )
            if background:
                batch = batch_service.submit_batch(request, submitted_by="cli")
                click.echo(f"Batch {batch.id} queued.")
                return
            batch = batch_service.create_batch(request, submitted_by="cli")
        except (ValidationError, ValueError) as e:
            raise click.BadParameter(str(e), param_hint="COUNT")

        click.echo(f"Running batch {batch.id} ({count} recipes)...")
        status = run_batch(batch.id)
        db.session.expire_all()  # the job ran in its own session
        batch = batch_service.get_batch(batch.id)
        click.echo(f"Batch {batch.id}: {status}, {batch.recipes_completed}/{count} saved")
        for error in batch.error_log or []:
            click.echo(f"  [{error.get('phase')}] {error.get('error')}")

    @app.cli.command("batch-progress")
    @click.argument("batch_id")
    def batch_progress(batch_id):
        """Show review queue progress for a batch."""
        from recipegen.services import batch_service, review_service

        batch = batch_service.get_batch(batch_id)
        if not batch:
            raise click.ClickException(f"Batch {batch_id} not found")

        click.echo(f"Batch {batch.id} [{batch.status}]")
        click.echo(f"  Recipes saved: {batch.recipes_completed}/{batch.requested_count}")
        p = review_service.get_batch_progress(batch_id)
        if not p["total"]:
            click.echo("  No review queue (small batch, published directly).")
            return
        click.echo(
            f"  Images: {p['imagesGenerated']} generated, "
            f"{p['imagesInProgress']} in progress, {p['imagesFailed']} failed"
        )
        click.echo(
            f"  Review: {p['pendingImages']} pending images, "
            f"{p['readyForReview']} ready, {p['approved']} approved, "
            f"{p['rejected']} rejected ({p['percentComplete']}%)"
        )

    @app.cli.command("approve-ready")
    @click.argument("batch_id")
    @click.option("--admin", default="cli", help="Reviewer recorded in the audit log")
    def approve_ready(batch_id, admin):
        """Approve every ready_for_review recipe in a batch."""
        from recipegen.services import review_service

        result = review_service.approve_all_ready(batch_id, admin)
        click.echo(
            f"Approved {len(result['approved'])}, failed {len(result['failed'])}."
        )
        for failure in result["failed"]:
            click.echo(f"  entry {failure['id']}: {failure['error']}")

    @app.cli.command("stats")
    def stats():
        """Show recipe statistics."""
        from recipegen.services.review_service import get_stats

        s = get_stats()
        total = sum(s.values())
        click.echo(f"Total recipes: {total}")
        for status, count in sorted(s.items()):
            click.echo(f"  {status}: {count}")
