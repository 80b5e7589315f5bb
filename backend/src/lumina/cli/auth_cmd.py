"""Account administration: roles, users and organizations."""

import click
from sqlalchemy.exc import IntegrityError

from lumina.auth.accounts import AccountStore
from lumina.auth.password import PasswordService
from lumina.cli.common import fail, load_project_registry, project_config
from lumina.persistence.database import Database


def _open_database():
    config = project_config()
    db = Database(config.database)
    db.connect()
    db.initialize(load_project_registry(config))
    return db, AccountStore(db.system)


@click.group()
def auth():
    """Account administration commands."""
    pass


@auth.command("create-role")
@click.argument("slug")
@click.option("--name", default=None, help="Display name (default: from the slug).")
@click.option("--permission", "-p", "permissions", multiple=True,
              help="Permission string such as posts.index, posts.* or * (repeatable).")
def create_role(slug: str, name: str | None, permissions: tuple[str, ...]):
    """Create a role with a set of permissions."""
    db, accounts = _open_database()
    try:
        with db.engine.begin() as conn:
            if accounts.find_role(conn, slug) is not None:
                fail(f"Error: role '{slug}' already exists")
            role = accounts.create_role(conn, slug, name, list(permissions))
    finally:
        db.close()
    click.echo(f"Created role '{role.slug}' with {len(role.permissions)} permission(s)")


@auth.command("create-organization")
@click.option("--name", required=True)
@click.option("--slug", required=True)
def create_organization(name: str, slug: str):
    """Create an organization."""
    db, accounts = _open_database()
    try:
        with db.engine.begin() as conn:
            organization = accounts.create_organization(conn, name, slug)
    except IntegrityError:
        fail(f"Error: organization slug '{slug}' is taken")
    finally:
        db.close()
    click.echo(f"Created organization {organization['id']} ({organization['slug']}, uuid {organization['uuid']})")


@auth.command("create-user")
@click.option("--email", required=True)
@click.option("--name", required=True)
@click.option("--password", required=True, prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--organization", default=None, help="Organization slug to join.")
@click.option("--role", default=None, help="Role slug (in the organization, or global without one).")
@click.option("--verified/--unverified", default=True, show_default=True)
def create_user(email: str, name: str, password: str, organization: str | None, role: str | None, verified: bool):
    """Create a user, optionally assigning a role."""
    db, accounts = _open_database()
    try:
        with db.engine.begin() as conn:
            if accounts.find_user_by_email(conn, email) is not None:
                fail(f"Error: a user with email '{email}' already exists")
            organization_id = None
            if organization:
                org = accounts.find_organization(conn, "slug", organization, active_only=False)
                if org is None:
                    fail(f"Error: organization '{organization}' not found")
                organization_id = org["id"]
            role_obj = None
            if role:
                role_obj = accounts.find_role(conn, role)
                if role_obj is None:
                    fail(f"Error: role '{role}' not found")
            elif organization_id is not None:
                fail("Error: --organization needs --role")

            user = accounts.create_user(conn, name, email, PasswordService().hash(password), verified=verified)
            if role_obj is not None:
                accounts.assign_role(conn, user["id"], role_obj.id, organization_id)
    finally:
        db.close()

    where = f" in '{organization}'" if organization else ""
    role_note = f" as '{role}'{where}" if role else ""
    click.echo(f"Created user {user['id']} <{user['email']}>{role_note}")
