"""GitHub repository provisioning.

Creates the proof and refiner repositories from their templates with the
``gh`` CLI when it is installed and logged in, and otherwise walks the user
through doing it by hand. Callers use ``provision`` and get the same
``ProvisioningResult`` either way.

Automated provisioning is idempotent per repository::

    gh repo view owner/name        -> exists? reuse it
    gh repo create owner/name --template vana-com/...
    gh api -X PUT repos/owner/name/actions/permissions ...

A failure on one repository never affects the other.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from rich.markup import escape

from create_datadao.config import GitHubConfig
from create_datadao.errors import ErrorKind, ExternalError, ValidationError, external_error
from create_datadao.prompts import Prompter
from create_datadao.provisioning.models import Capability, ProvisioningResult, ProvisioningSpec
from create_datadao.retry import classify, infer_kind
from create_datadao.utils import console, print_classified_error, print_info, print_success, print_warning, run_command
from create_datadao.validation import repo_url_validator

Runner = Callable[..., Awaitable[tuple[int, str, str]]]

_NOT_AUTHENTICATED = ("not logged in", "not authenticated")


class GitHubProvisioner:
    """Provisioning adapter for the two DataDAO component repositories."""

    def __init__(
        self,
        config: GitHubConfig | None = None,
        prompter: Prompter | None = None,
        runner: Runner = run_command,
    ) -> None:
        self.config = config or GitHubConfig()
        self.prompter = prompter or Prompter()
        self.runner = runner

    async def _gh(self, *args: str) -> tuple[int, str, str]:
        return await self.runner([self.config.binary, *args], timeout=self.config.timeout)

    def _url(self, full_name: str) -> str:
        return f"https://{self.config.allowed_host}/{full_name}"

    @staticmethod
    def _require_identifiers(spec: ProvisioningSpec) -> None:
        missing = [name for name in ("owner", "project_name") if not getattr(spec, name).strip()]
        if missing:
            raise ValidationError(f"Provisioning needs {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Capability detection
    # ------------------------------------------------------------------

    async def detect_capability(self) -> Capability:
        """Probe the CLI without side effects."""
        try:
            returncode, _, _ = await self._gh("--version")
        except FileNotFoundError:
            return Capability(available=False, authenticated=False)
        if returncode != 0:
            return Capability(available=False, authenticated=False)

        returncode, stdout, stderr = await self._gh("auth", "status")
        output = f"{stdout}\n{stderr}".lower()
        authenticated = returncode == 0 and not any(text in output for text in _NOT_AUTHENTICATED)
        return Capability(available=True, authenticated=authenticated)

    # ------------------------------------------------------------------
    # Automated path
    # ------------------------------------------------------------------

    async def _ensure_repo(self, template: str, full_name: str, visibility: str) -> str:
        """Return the URL of *full_name*, creating it from *template* if needed."""
        returncode, stdout, stderr = await self._gh("repo", "view", full_name, "--json", "url", "-q", ".url")
        if returncode == 0:
            print_info(f"  {full_name} already exists, reusing it")
            return stdout.strip() or self._url(full_name)

        kind = infer_kind(stderr)
        if kind in (ErrorKind.AUTH_REQUIRED, ErrorKind.RATE_LIMITED):
            raise external_error(kind, f"gh repo view {full_name} failed: {stderr}", code=returncode)

        returncode, stdout, stderr = await self._gh(
            "repo", "create", full_name, "--template", template, f"--{visibility}"
        )
        if returncode != 0:
            kind = infer_kind(f"{stderr}\n{stdout}")
            if kind is ErrorKind.ALREADY_EXISTS:
                print_info(f"  {full_name} already exists, reusing it")
                return self._url(full_name)
            raise external_error(
                kind,
                f"gh repo create {full_name} failed: {stderr or stdout}",
                code=returncode,
                details={"repository": full_name, "template": template},
            )

        created = stdout.strip().splitlines()
        url = created[-1].strip() if created and created[-1].startswith("https://") else self._url(full_name)
        print_success(f"  Created {url} from {template}")
        return url

    async def _enable_actions(self, full_name: str) -> None:
        returncode, stdout, stderr = await self._gh(
            "api", "-X", "PUT", f"repos/{full_name}/actions/permissions",
            "-F", "enabled=true", "-f", "allowed_actions=all",
        )
        if returncode != 0:
            raise external_error(
                infer_kind(f"{stderr}\n{stdout}"),
                f"Could not enable GitHub Actions on {full_name}: {stderr or stdout}",
                code=returncode,
                details={"repository": full_name},
            )

    async def _provision_one(self, template: str, full_name: str, visibility: str) -> str | None:
        try:
            url = await self._ensure_repo(template, full_name, visibility)
            await self._enable_actions(full_name)
            return url
        except ExternalError as exc:
            print_warning(f"  Could not provision {full_name}")
            print_classified_error(classify(exc))
            return None

    async def provision_automatically(self, spec: ProvisioningSpec) -> ProvisioningResult:
        """Create both repositories; each one fails or succeeds on its own.

        Raises:
            ValidationError: If the owner or project name is missing.
        """
        self._require_identifiers(spec)
        proof = spec.existing_primary_url or await self._provision_one(
            spec.proof_template, f"{spec.owner}/{spec.proof_repo}", spec.visibility
        )
        refiner = spec.existing_secondary_url or await self._provision_one(
            spec.refiner_template, f"{spec.owner}/{spec.refiner_repo}", spec.visibility
        )
        return ProvisioningResult(primary_resource_url=proof, secondary_resource_url=refiner, automated=True)

    # ------------------------------------------------------------------
    # Manual path
    # ------------------------------------------------------------------

    def provision_manually(self, spec: ProvisioningSpec) -> ProvisioningResult:
        """Guide the user through creating both repositories and ask for their URLs."""
        validate = repo_url_validator(self.config.allowed_host)
        urls: list[str] = []
        for label, template, repo, existing in (
            ("Proof of Contribution", spec.proof_template, spec.proof_repo, spec.existing_primary_url),
            ("Data Refinement", spec.refiner_template, spec.refiner_repo, spec.existing_secondary_url),
        ):
            if existing:
                urls.append(existing)
                continue
            console.print(f"\n[cyan]{escape(label)}[/cyan]")
            console.print(f"  1. Open {escape(self._url(template))} and click [bold]Use this template[/bold]")
            console.print("  2. Create the repository under your account")
            console.print("  3. Settings -> Actions -> General: allow all actions, then Save")
            default = self._url(f"{spec.owner}/{repo}") if spec.owner and spec.project_name else None
            urls.append(
                self.prompter.text(f"URL of your {label} repository", default=default, validate=validate)
            )
        return ProvisioningResult(primary_resource_url=urls[0], secondary_resource_url=urls[1], automated=False)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def provision(self, spec: ProvisioningSpec) -> ProvisioningResult:
        """Provision automatically when possible, otherwise fall back to the manual flow."""
        capability = await self.detect_capability()
        if not capability.available:
            print_warning(f"{self.config.binary} is not installed; switching to manual setup.")
            return self.provision_manually(spec)
        if not capability.authenticated:
            print_warning(f"{self.config.binary} is not logged in (run `gh auth login`); switching to manual setup.")
            return self.provision_manually(spec)

        result = await self.provision_automatically(spec)
        if not result.any_created:
            print_warning("Automatic setup failed for both repositories; switching to manual setup.")
            return self.provision_manually(spec)
        return result
