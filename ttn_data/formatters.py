"""
Console formatters for received TTN events.
"""

import json
from dataclasses import dataclass, field

from .router import MessageReceivedEvent
from .topics import EventKind

SEPARATOR_WIDTH = 68


@dataclass
class Statistics:
    """Listener statistics."""
    total_messages: int = 0
    errors: int = 0
    kind_counts: dict[str, int] = field(default_factory=dict)

    def increment_kind(self, kind: EventKind):
        """Increment counter for an event kind."""
        self.kind_counts[kind.name] = self.kind_counts.get(kind.name, 0) + 1

    def get_sorted_kinds(self) -> list[tuple[str, int]]:
        """Get event kind counts sorted by frequency."""
        return sorted(self.kind_counts.items(), key=lambda x: x[1], reverse=True)


class MessageFormatter:
    """Formatter for console output of received events."""

    SEPARATOR_WIDTH = SEPARATOR_WIDTH

    def format_event(self, event: MessageReceivedEvent) -> str:
        """Format one event as a separated block."""
        msg = event.message
        lines = [
            "=" * SEPARATOR_WIDTH,
            f"Topic: {event.topic}",
            f"Event: {event.kind.name}   Device: {event.device_id}   App: {event.app_id}"
            + (f"@{event.tenant_id}" if event.tenant_id else ""),
        ]
        if msg.received_at:
            lines.append(f"Received: {msg.received_at.isoformat()}")
        if msg.end_device_ids and msg.end_device_ids.dev_eui:
            lines.append(f"DevEUI: {msg.end_device_ids.dev_eui.hex().upper()}")
        lines.append("─" * SEPARATOR_WIDTH)
        lines.extend(self._format_body(event))
        lines.append("=" * SEPARATOR_WIDTH)
        return "\n".join(lines)

    def _format_body(self, event: MessageReceivedEvent) -> list[str]:
        msg = event.message
        match event.kind:
            case EventKind.UP:
                return self._format_uplink(msg.uplink_message)
            case EventKind.JOIN:
                if msg.join_accept and msg.join_accept.session_key_id:
                    return [f"Join accepted, session key ID {msg.join_accept.session_key_id.hex()}"]
                return ["Join accepted"]
            case EventKind.DOWN_QUEUED:
                return self._format_downlink("Queued", msg.downlink_queued)
            case EventKind.DOWN_SENT:
                return self._format_downlink("Sent", msg.downlink_sent)
            case EventKind.DOWN_ACK:
                return self._format_downlink("Acknowledged", msg.downlink_ack)
            case EventKind.DOWN_NACK:
                return self._format_downlink("Not acknowledged", msg.downlink_nack)
            case EventKind.DOWN_FAILED:
                failed = msg.downlink_failed
                lines = self._format_downlink("Failed", failed.downlink if failed else None)
                if failed and failed.error:
                    lines.append(f"   Error: {failed.error.namespace}:{failed.error.name} (code {failed.error.code})")
                return lines
            case _:
                return [f"{event.kind.value} event"]

    @staticmethod
    def _format_uplink(uplink) -> list[str]:
        if uplink is None:
            return ["Uplink (no content)"]
        lines = [
            f"Uplink on FPort {uplink.f_port}" + (f", FCnt {uplink.f_cnt}" if uplink.f_cnt is not None else ""),
            f"   Payload:  {uplink.frm_payload.hex().upper() or '(empty)'}",
        ]
        if uplink.decoded_payload is not None:
            lines.append(f"   Decoded:  {json.dumps(uplink.decoded_payload)}")
        for rx in uplink.rx_metadata or ():
            gateway = rx.gateway_ids.gateway_id if rx.gateway_ids else "unknown"
            lines.append(f"   Gateway:  {gateway}  RSSI {rx.rssi} dBm  SNR {rx.snr:.1f} dB")
        if uplink.settings and uplink.settings.data_rate and uplink.settings.data_rate.lora:
            lora = uplink.settings.data_rate.lora
            lines.append(f"   Data rate: SF{lora.spreading_factor}BW{lora.bandwidth // 1000}")
        if uplink.consumed_airtime is not None:
            lines.append(f"   Airtime:  {uplink.consumed_airtime.total_seconds() * 1000:.1f} ms")
        return lines

    @staticmethod
    def _format_downlink(label: str, downlink) -> list[str]:
        if downlink is None:
            return [f"Downlink {label.lower()}"]
        payload = downlink.frm_payload.hex().upper() if downlink.frm_payload else "(none)"
        return [
            f"Downlink {label.lower()} on FPort {downlink.f_port}",
            f"   Payload:  {payload}",
            f"   Priority: {downlink.priority.value}   Confirmed: {downlink.confirmed}",
        ]

    @staticmethod
    def format_statistics(stats: Statistics) -> str:
        lines = [
            "=" * SEPARATOR_WIDTH,
            "STATISTICS",
            "─" * SEPARATOR_WIDTH,
            f"Total messages: {stats.total_messages}",
            f"Errors:         {stats.errors}",
        ]
        for name, count in stats.get_sorted_kinds():
            lines.append(f"   {name:<16} {count}")
        lines.append("=" * SEPARATOR_WIDTH)
        return "\n".join(lines)
