"""
Command Line Interface for TaskNest.
"""

import dataclasses
from datetime import date
from pathlib import Path

import click

from .version import VERSION
from .config import get_settings
from .context import TaskContext
from .models import Task
from .recovery import TaskNestError

WEEKDAYS = "Su Mo Tu We Th Fr Sa"


def _fail(message: str):
    click.echo(f"❌ {message}")
    raise click.exceptions.Exit(1)


def _open(ctx: click.Context) -> TaskContext:
    settings = get_settings()
    if ctx.obj and ctx.obj.get("data_dir"):
        settings = dataclasses.replace(settings, data_dir=Path(ctx.obj["data_dir"]))
    return TaskContext.from_settings(settings)


def _format_task(task: Task, level: int = 0) -> str:
    mark = "☑" if task.completed else "☐"
    parts = [f"{'  ' * level}{mark} {task.title or '(untitled)'}", f"[{task.id}]"]
    priority = task.properties.get("priority")
    if priority:
        parts.append(f"!{priority}")
    if task.due_date:
        parts.append(f"📅 {task.due_date}")
    if task.tags:
        parts.append(" ".join(f"#{tag}" for tag in task.tags))
    return "  ".join(parts)


def _property_changes(priority, status, due, tags):
    changes = {}
    if priority:
        changes["priority"] = priority
    if status:
        changes["status"] = status
    if due:
        changes["dueDate"] = due.date().isoformat()
    if tags:
        changes["tags"] = list(tags)
    return changes


def _task_options(command):
    command = click.option('--tag', 'tags', multiple=True, help='Tag (repeatable)')(command)
    command = click.option('--due', type=click.DateTime(formats=["%Y-%m-%d"]), help='Due date (YYYY-MM-DD)')(command)
    command = click.option('--status', help='Status, e.g. "Not Started"')(command)
    command = click.option('--priority', type=click.Choice(["Low", "Medium", "High", "Urgent"]), help='Priority')(command)
    command = click.option('-d', '--description', help='Longer description')(command)
    return command


@click.group()
@click.version_option(version=VERSION, prog_name="tasknest")
@click.option('--data-dir', type=click.Path(file_okay=False), help='Data directory (default: $TASKNEST_DATA_DIR)')
@click.pass_context
def main(ctx, data_dir):
    """
    TaskNest - a personal outliner for nested tasks.

    Tasks form a tree; categories filter it, and every change is saved
    locally with rolling backups.
    """
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


@main.command()
@click.argument('title')
@click.option('-p', '--parent', help='Parent task id')
@_task_options
@click.pass_context
def add(ctx, title, parent, description, priority, status, due, tags):
    """Add a task at the end of the list."""
    with _open(ctx) as context:
        if parent and context.get_task(parent) is None:
            _fail(f"Task {parent} not found")
        try:
            task = context.add_task({
                "title": title,
                "description": description,
                "parent_id": parent,
                "properties": _property_changes(priority, status, due, tags),
            })
        except TaskNestError as e:
            _fail(str(e))
        click.echo(f"✅ Added {task.title} [{task.id}]")


@main.command('insert-after')
@click.argument('anchor')
@click.argument('title')
@_task_options
@click.pass_context
def insert_after(ctx, anchor, title, description, priority, status, due, tags):
    """Add a sibling right after ANCHOR and its subtasks."""
    with _open(ctx) as context:
        anchor_task = context.get_task(anchor)
        if anchor_task is None:
            _fail(f"Task {anchor} not found")
        try:
            task = context.add_task({
                "title": title,
                "description": description,
                "parent_id": anchor_task.parent_id,
                "properties": _property_changes(priority, status, due, tags),
            }, after_id=anchor)
        except TaskNestError as e:
            _fail(str(e))
        click.echo(f"✅ Added {task.title} [{task.id}] after {anchor}")


@main.command('list')
@click.option('-c', '--category', help='Category id to filter by')
@click.option('-s', '--search', default='', help='Only tasks whose title or description contains this')
@click.option('--sort', 'sort_by', type=click.Choice(["createdAt", "title", "priority", "status"]), default="createdAt")
@click.option('--desc', is_flag=True, help='Sort descending')
@click.pass_context
def list_tasks(ctx, category, search, sort_by, desc):
    """Show the task outline."""
    with _open(ctx) as context:
        if category and category != "all" and context.store.get_category(category) is None:
            _fail(f"Category {category} not found")
        rows = context.rows(search=search, sort_by=sort_by, descending=desc, category_id=category)
        if not rows:
            click.echo("📭 No tasks")
            return
        for task, level in rows:
            click.echo(_format_task(task, level))


@main.command()
@click.argument('task_id')
@click.pass_context
def done(ctx, task_id):
    """Toggle a task between completed and not started."""
    with _open(ctx) as context:
        task = context.toggle_completed(task_id)
        if task is None:
            _fail(f"Task {task_id} not found")
        click.echo(f"{'☑' if task.completed else '☐'} {task.title}")


@main.command()
@click.argument('task_id')
@click.option('-t', '--title', help='New title')
@click.option('-p', '--parent', help='New parent task id')
@click.option('--root', is_flag=True, help='Move the task to the top level')
@_task_options
@click.pass_context
def edit(ctx, task_id, title, parent, root, description, priority, status, due, tags):
    """Change a task's fields."""
    with _open(ctx) as context:
        task = context.get_task(task_id)
        if task is None:
            _fail(f"Task {task_id} not found")

        changes = {}
        if title is not None:
            changes["title"] = title
        if description is not None:
            changes["description"] = description
        if root:
            changes["parent_id"] = None
        elif parent:
            if context.get_task(parent) is None:
                _fail(f"Task {parent} not found")
            changes["parent_id"] = parent
        properties = _property_changes(priority, status, due, tags)
        if properties:
            changes["properties"] = {**task.properties, **properties}

        if not changes:
            click.echo("💡 Nothing to change")
            return
        try:
            task = context.update_task(task_id, **changes)
        except TaskNestError as e:
            _fail(str(e))
        click.echo(f"✅ Updated {task.title} [{task.id}]")


@main.command()
@click.argument('task_id')
@click.pass_context
def rm(ctx, task_id):
    """Delete a task and all of its subtasks."""
    with _open(ctx) as context:
        removed = context.delete_task(task_id)
        if not removed:
            _fail(f"Task {task_id} not found")
        click.echo(f"🗑️  Deleted {len(removed)} task(s)")


@main.command()
@click.argument('task_id')
@click.pass_context
def indent(ctx, task_id):
    """Nest a task under the row above it."""
    with _open(ctx) as context:
        if context.get_task(task_id) is None:
            _fail(f"Task {task_id} not found")
        if context.indent(task_id):
            click.echo(f"➡️  Indented {task_id}")
        else:
            click.echo(f"💡 {task_id} cannot be indented further")


@main.command()
@click.argument('task_id')
@click.pass_context
def unindent(ctx, task_id):
    """Move a task up one level."""
    with _open(ctx) as context:
        if context.get_task(task_id) is None:
            _fail(f"Task {task_id} not found")
        if context.unindent(task_id):
            click.echo(f"⬅️  Unindented {task_id}")
        else:
            click.echo(f"💡 {task_id} is already at the top level")


@main.command()
@click.option('--delete', 'delete_tag', help='Remove a tag everywhere')
@click.pass_context
def tags(ctx, delete_tag):
    """List tags in use, or delete one."""
    with _open(ctx) as context:
        if delete_tag:
            touched = context.delete_tag_option(delete_tag)
            click.echo(f"🏷️  Removed {delete_tag} from {len(touched)} task(s)")
            return
        all_tags = context.get_all_tags()
        if not all_tags:
            click.echo("📭 No tags")
            return
        for tag in all_tags:
            click.echo(f"#{tag}")


@main.group(invoke_without_command=True)
@click.pass_context
def categories(ctx):
    """List categories; use the subcommands to change them."""
    if ctx.invoked_subcommand is not None:
        return
    with _open(ctx) as context:
        for category in context.categories:
            rule = ""
            if category.filter.property_id:
                rule = f"  ({category.filter.property_id} = {category.filter.value})"
            click.echo(f"📂 {category.name} [{category.id}]{rule}")


@categories.command('add')
@click.argument('name')
@click.option('--property', 'property_id', help='Property the category filters on')
@click.option('--value', help='Value the property must have (or contain)')
@click.option('--icon', help='Icon tag')
@click.pass_context
def add_category(ctx, name, property_id, value, icon):
    """Add a filtering category."""
    with _open(ctx) as context:
        category = context.add_category({
            "name": name,
            "icon": icon,
            "filter": {"propertyId": property_id, "value": value},
        })
        click.echo(f"✅ Added category {category.name} [{category.id}]")


@categories.command('rm')
@click.argument('category_id')
@click.pass_context
def remove_category(ctx, category_id):
    """Delete a category. Its tasks are kept."""
    with _open(ctx) as context:
        if not context.delete_category(category_id):
            _fail(f"Category {category_id} not found")
        click.echo(f"🗑️  Deleted category {category_id}")


@main.command()
@click.option('-m', '--month', type=click.DateTime(formats=["%Y-%m"]), help='Month to show (YYYY-MM)')
@click.option('-c', '--category', help='Category id to filter by')
@click.pass_context
def calendar(ctx, month, category):
    """Show a month with the tasks due in it."""
    first = month.date() if month else date.today().replace(day=1)
    with _open(ctx) as context:
        store = context.store
        predicate = store.category_predicate(category or context.current_category)
        grid = store.month_grid(first.year, first.month)

        click.echo(f"📅 {first.strftime('%B %Y')}")
        click.echo(WEEKDAYS)
        due_days = []
        cells = []
        for day in grid:
            if day is None:
                cells.append("  ")
                continue
            due = store.tasks_for_date(day, predicate)
            if due:
                due_days.append((day, due))
            cells.append(f"{day.day:2d}")
        for start in range(0, len(cells), 7):
            click.echo(" ".join(cells[start:start + 7]))

        for day, due in due_days:
            click.echo("")
            click.echo(f"{day.isoformat()}:")
            for task in due:
                click.echo(f"  {_format_task(task)}")

        undated = store.tasks_without_due_date(predicate)
        click.echo("")
        click.echo(f"💡 {len(undated)} task(s) without a due date")


@main.command('export')
@click.argument('path', required=False, type=click.Path(dir_okay=True))
@click.pass_context
def export_data(ctx, path):
    """Export all data to PATH (.json or .yml; default backup-<date>.json)."""
    with _open(ctx) as context:
        try:
            written = context.export_file(path)
        except TaskNestError as e:
            _fail(f"Error exporting data: {e}")
        click.echo(f"✅ Exported to {written}")


@main.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.confirmation_option(prompt='Importing replaces all current data. Continue?')
@click.pass_context
def import_data(ctx, path):
    """Replace all data with an exported file."""
    with _open(ctx) as context:
        try:
            snapshot = context.import_file(path)
        except TaskNestError as e:
            _fail(f"Error importing data: {e}")
        click.echo(f"✅ Imported {len(snapshot.tasks)} task(s)")


@main.command()
@click.pass_context
def stats(ctx):
    """Show storage usage."""
    with _open(ctx) as context:
        info = context.stats()
        click.echo("🔧 TaskNest")
        click.echo(f"📦 Version: {VERSION}")
        click.echo(f"📋 Tasks: {len(context.tasks)}")
        click.echo(f"💾 Size: {info.size} bytes")
        click.echo(f"🗂️  Backups: {info.backup_count}")
        click.echo(f"🕒 Last modified: {info.last_modified.isoformat()}")


@main.command()
@click.pass_context
def backups(ctx):
    """List available backups (newest first)."""
    with _open(ctx) as context:
        keys = context.storage.list_backups()
        if not keys:
            click.echo("📭 No backups found")
            return
        click.echo("📦 Available backups:")
        for key in keys:
            click.echo(f"🗂️  {key}")


@main.command()
@click.argument('backup_key')
@click.confirmation_option(prompt='Are you sure you want to restore from backup?')
@click.pass_context
def restore(ctx, backup_key):
    """Make a backup the current data again."""
    with _open(ctx) as context:
        try:
            snapshot = context.restore_backup(backup_key)
        except (TaskNestError, ValueError, FileNotFoundError) as e:
            _fail(f"Error restoring backup: {e}")
        click.echo(f"✅ Restored {len(snapshot.tasks)} task(s) from {backup_key}")


@main.command()
@click.confirmation_option(prompt='Delete all tasks and backups?')
@click.pass_context
def clear(ctx):
    """Delete all stored data and backups, then reseed the defaults."""
    with _open(ctx) as context:
        context.clear()
        click.echo("🧹 All data cleared")


if __name__ == "__main__":
    main()
