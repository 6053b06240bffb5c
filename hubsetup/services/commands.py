"""Shell command and source-archive URL builders.

Everything here returns plain strings; the engine treats them as opaque.
Paths and URLs are quoted with ``shlex.quote``.
"""

from __future__ import annotations

import shlex

TRANSFER_TOOLS: tuple[str, ...] = ("curl", "wget")


# ── archive source ────────────────────────────────────────────────────────

def archive_url(owner: str, repo: str, branch: str = "main") -> str:
    """tar.gz archive of a branch head."""
    return f"https://github.com/{owner}/{repo}/archive/refs/heads/{branch}.tar.gz"


def raw_file_url(owner: str, repo: str, branch: str, file_path: str) -> str:
    return f"https://raw.githubusercontent.com/{owner}/{repo}/{branch}/{file_path.lstrip('/')}"


def extracted_dir_name(repo: str, branch: str) -> str:
    """Top-level directory inside a branch archive (``repo-branch``)."""
    return f"{repo}-{branch.replace('/', '-')}"


# ── shell commands ────────────────────────────────────────────────────────

def shell_wrap(command: str, cwd: str | None = None) -> str:
    """Run *command* through ``sh -c`` so pipes and ``&&`` keep their meaning."""
    if cwd:
        command = f"cd {shlex.quote(cwd)} && {command}"
    return f"sh -c {shlex.quote(command)}"


def probe_command(tool: str) -> str:
    return f"command -v {shlex.quote(tool)}"


def curl_command(url: str, output_path: str) -> str:
    return f"curl -fL {shlex.quote(url)} -o {shlex.quote(output_path)}"


def wget_command(url: str, output_path: str) -> str:
    return f"wget -O {shlex.quote(output_path)} {shlex.quote(url)}"


def download_command(url: str, output_path: str, tool: str = "wget") -> str:
    if tool == "curl":
        return curl_command(url, output_path)
    if tool == "wget":
        return wget_command(url, output_path)
    raise ValueError(f"Unsupported transfer tool: {tool}")


def extract_command(archive_path: str, extract_to: str) -> str:
    return f"tar -xzf {shlex.quote(archive_path)} -C {shlex.quote(extract_to)}"


def mkdir_command(dir_path: str) -> str:
    return f"mkdir -p {shlex.quote(dir_path)}"


def file_exists_command(path: str) -> str:
    return f"test -f {shlex.quote(path)}"


def move_command(src: str, dest: str) -> str:
    return f"mv {shlex.quote(src)} {shlex.quote(dest)}"


def chmod_command(mode: str, path: str) -> str:
    return f"chmod {shlex.quote(mode)} {shlex.quote(path)}"


def run_script_command(interpreter: str, script: str) -> str:
    return f"{interpreter} {shlex.quote(script)}"


def npm_global_check_command(package: str) -> str:
    return f"npm list -g --depth=0 {shlex.quote(package)}"


def npm_global_install_command(package: str) -> str:
    return f"npm i -g {shlex.quote(package)}"


def network_list_command(runtime: str = "podman") -> str:
    return f"{runtime} network ls --format '{{{{.Name}}}}'"


def network_create_command(name: str, runtime: str = "podman") -> str:
    return f"{runtime} network create {shlex.quote(name)}"

