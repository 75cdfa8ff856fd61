from typing import Tuple

from .errors import UnknownEcosystemError

# Package ecosystems Dependabot updates. Dependabot embeds the id in its branch
# names, e.g. dependabot/npm_and_yarn/lodash-4.17.21.
ECOSYSTEMS: Tuple[str, ...] = (
    "bazel",
    "bun",
    "bundler",
    "cargo",
    "composer",
    "conda",
    "devcontainers",
    "docker",
    "docker_compose",
    "dotnet_sdk",
    "elm",
    "git_submodules",
    "github_actions",
    "go_modules",
    "gradle",
    "helm",
    "hex",
    "julia",
    "maven",
    "npm_and_yarn",
    "nuget",
    "pub",
    "python",
    "rust_toolchain",
    "swift",
    "terraform",
    "uv",
    "vcpkg",
)


def is_known(ecosystem: str) -> bool:
    return ecosystem in ECOSYSTEMS


def classify_branch(head_ref: str) -> str:
    """Return the first catalog id contained in ``head_ref``.

    Catalog order decides when several ids match (``docker`` wins over
    ``docker_compose``). Raises UnknownEcosystemError when nothing matches.
    """
    for ecosystem in ECOSYSTEMS:
        if ecosystem in head_ref:
            return ecosystem
    raise UnknownEcosystemError(head_ref)
