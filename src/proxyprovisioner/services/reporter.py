"""Machine-parsable result summary."""

from typing import List, Union

import click

from proxyprovisioner.models import ProvisioningReport, VpnReport


class Reporter:
    """Prints one ``Key=value`` line per field on stdout."""

    def render(self, report: Union[ProvisioningReport, VpnReport]) -> List[str]:
        if isinstance(report, VpnReport):
            return self.render_vpn(report)

        lines = [
            f"ProxyHost={report.host}",
            f"ProxyPort={report.port}",
        ]
        for credential in report.credentials:
            lines.append(f"ProxyLogin={credential.login}")
            lines.append(f"ProxyPass={credential.password}")
        lines.append(f"ProxyTest={report.probe_status}")
        return lines

    def render_vpn(self, report: VpnReport) -> List[str]:
        # The web password is write-only; it is never echoed back.
        return [
            f"WgHost={report.host}",
            f"WgPort={report.port}",
            f"WgDefaultAddress={report.client_subnet}",
            f"WgWebUI={report.web_ui_url}",
            f"WgDataDir={report.data_dir}",
        ]

    def emit(self, report: Union[ProvisioningReport, VpnReport]):
        for line in self.render(report):
            click.echo(line)
