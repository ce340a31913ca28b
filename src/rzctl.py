#!/usr/bin/env python3
"""
CLI tool for the razee controller engine.
Runs the apply engine against manifests on disk and shows razee-logs.
"""

import asyncio
import json
import logging

import click
import yaml
from kubernetes_asyncio.config import ConfigException
from tabulate import tabulate

import apply as apply_engine
from config import get_config
from context import RAZEE_LOGS
from errors import ApiError
from kube import KubeResourceClient
from tree import get_path


def plural_for_kind(kind: str) -> str:
    """Best guess of the REST plural for a kind, e.g. ConfigMap -> configmaps."""
    lower = kind.lower()
    if lower.endswith("y") and lower[-2:-1] not in ("a", "e", "i", "o", "u"):
        return lower[:-1] + "ies"
    if lower.endswith(("s", "x", "ch", "sh")):
        return lower + "es"
    return lower + "s"


def load_manifests(filename: str):
    """Read every document of a YAML or JSON file."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            docs = [d for d in yaml.safe_load_all(f) if d]
        else:
            data = json.load(f)
            docs = data if isinstance(data, list) else [data]

    manifests = []
    for doc in docs:
        if doc.get("kind", "").endswith("List") and "items" in doc:
            manifests.extend(doc["items"])
        else:
            manifests.append(doc)
    return manifests


async def client_for(manifest, plural=None, namespaced=True) -> KubeResourceClient:
    cfg = get_config()
    return await KubeResourceClient.from_config(
        cfg.kube,
        api_version=manifest["apiVersion"],
        plural=plural or plural_for_kind(manifest["kind"]),
        namespaced=namespaced,
    )


def with_namespace(manifest, namespace, cluster_scoped=False):
    """Fill in the target namespace of a namespaced manifest that has none."""
    if not cluster_scoped and not get_path(manifest, ["metadata", "namespace"]):
        manifest.setdefault("metadata", {})["namespace"] = namespace
    return manifest


def run_each(filename, plural, namespace, cluster_scoped, operation):
    """Run an apply engine coroutine for every manifest, echoing results."""

    async def run_all():
        rows = []
        for manifest in load_manifests(filename):
            manifest = with_namespace(manifest, namespace, cluster_scoped)
            client = await client_for(manifest, plural, not cluster_scoped)
            res = await operation(client, manifest)
            rows.append(
                [
                    manifest.get("kind"),
                    get_path(manifest, ["metadata", "namespace"], ""),
                    get_path(manifest, ["metadata", "name"]),
                    res.status_code,
                ]
            )
        return rows

    try:
        rows = asyncio.run(run_all())
    except ApiError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Detail: {json.dumps(e.to_dict(), default=str)}", err=True)
        raise SystemExit(1)
    except ConfigException as e:
        click.echo(f"Error: no cluster configuration - {e}", err=True)
        raise SystemExit(1)

    click.echo(
        tabulate(rows, headers=["Kind", "Namespace", "Name", "Status"], tablefmt="grid")
    )


def target_options(f):
    """Options that locate the target resources."""
    f = click.option(
        "--cluster-scoped", is_flag=True, help="The kind is not namespaced"
    )(f)
    f = click.option(
        "--namespace",
        "-n",
        default="default",
        show_default=True,
        help="Namespace for manifests that do not set one",
    )(f)
    f = click.option("--plural", help="REST plural of the kind, if not derivable")(f)
    return f


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log every API call")
def cli(verbose):
    """razee controller CLI - apply manifests the way controllers do"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else get_config().controller.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option(
    "--mode",
    "-m",
    type=click.Choice([m.value for m in apply_engine.ApplyMode]),
    default=apply_engine.ApplyMode.MERGE_PATCH.value,
)
@target_options
def apply(filename, mode, plural, namespace, cluster_scoped):
    """Three-way-merge apply a YAML/JSON manifest file"""
    run_each(
        filename,
        plural,
        namespace,
        cluster_scoped,
        lambda client, manifest: apply_engine.apply(client, manifest, mode),
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--hard", is_flag=True, help="Do not merge live metadata")
@click.option("--no-force", is_flag=True, help="Keep the manifest resourceVersion")
@target_options
def replace(filename, hard, no_force, plural, namespace, cluster_scoped):
    """Replace resources with the manifest file contents"""
    run_each(
        filename,
        plural,
        namespace,
        cluster_scoped,
        lambda client, manifest: apply_engine.replace(
            client, manifest, hard=hard, force=not no_force
        ),
    )


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@target_options
def ensure(filename, plural, namespace, cluster_scoped):
    """Create resources from the manifest file unless they exist"""
    run_each(filename, plural, namespace, cluster_scoped, apply_engine.ensure_exists)


@cli.command()
@click.argument("api_version")
@click.argument("kind")
@click.argument("name")
@target_options
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
def logs(api_version, kind, name, plural, namespace, cluster_scoped, output):
    """Show the razee-logs of a resource"""
    if cluster_scoped:
        namespace = None
    manifest = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace},
    }

    async def fetch():
        client = await client_for(manifest, plural, not cluster_scoped)
        return await client.get(name, namespace)

    try:
        res = asyncio.run(fetch())
    except ConfigException as e:
        click.echo(f"Error: no cluster configuration - {e}", err=True)
        raise SystemExit(1)
    if not res.ok:
        click.echo(f"Error: {ApiError.from_response(res)}", err=True)
        raise SystemExit(1)

    razee_logs = get_path(res.body, ["status", RAZEE_LOGS]) or {}
    if output == "json":
        click.echo(json.dumps(razee_logs, indent=2))
    elif output == "yaml":
        click.echo(yaml.dump(razee_logs, default_flow_style=False))
    elif not razee_logs:
        click.echo("No razee-logs recorded")
    else:
        rows = []
        for level, entries in razee_logs.items():
            for log_hash, message in (entries or {}).items():
                if not isinstance(message, str):
                    message = json.dumps(message)
                rows.append([level, log_hash[:12], message])
        click.echo(tabulate(rows, headers=["Level", "Hash", "Message"], tablefmt="grid"))


if __name__ == "__main__":
    cli()
