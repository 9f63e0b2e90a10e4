"""Membership management for the embedded etcd cluster."""

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from urllib.parse import urlsplit

from .datadir import PROGRAM
from .etcd_storage import etcd_db_dir
from .executor import ETCDConfig, InitialOptions, PeerTrust, ServerTrust

log = logging.getLogger(__name__)

ENDPOINT = "https://127.0.0.1:2379"
LEARNER_PROGRESS_KEY = PROGRAM + "/etcd/learnerProgress"
LEARNER_MAX_STALL_TIME = timedelta(minutes=1)


class ClusterMembershipError(Exception):
    """Raised when this server is not, or can no longer be, a voting member."""


@dataclass
class Member:
    """An etcd cluster member as reported by the member list."""

    id: int = 0
    name: str = ""
    peer_urls: list[str] = field(default_factory=list)
    client_urls: list[str] = field(default_factory=list)
    is_learner: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the member in its JSON form, empty fields left out."""
        values = {
            "ID": self.id,
            "name": self.name,
            "peerURLs": list(self.peer_urls),
            "clientURLs": list(self.client_urls),
            "isLearner": self.is_learner,
        }
        return {key: value for key, value in values.items() if value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Member":
        """Build a member from its JSON form."""
        return cls(
            id=int(data.get("ID", 0)),
            name=data.get("name", ""),
            peer_urls=list(data.get("peerURLs") or []),
            client_urls=list(data.get("clientURLs") or []),
            is_learner=bool(data.get("isLearner", False)),
        )


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(text: str | None) -> datetime | None:
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class LearnerProgress:
    """How far a learner has got towards promotion, stored in etcd."""

    id: int = 0
    name: str = ""
    raft_applied_index: int = 0
    last_progress: datetime | None = None

    def to_json(self) -> str:
        """Return the stored JSON form, ending in a newline."""
        values: dict[str, Any] = {}
        if self.id:
            values["id"] = self.id
        if self.name:
            values["name"] = self.name
        values["raftAppliedIndex"] = self.raft_applied_index
        values["lastProgress"] = _format_time(self.last_progress)
        return json.dumps(values, separators=(",", ":")) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "LearnerProgress":
        """Parse the stored JSON form."""
        data = json.loads(text)
        return cls(
            id=int(data.get("id", 0)),
            name=data.get("name", ""),
            raft_applied_index=int(data.get("raftAppliedIndex", 0)),
            last_progress=_parse_time(data.get("lastProgress")),
        )


class _StatusLike(Protocol):
    is_learner: bool
    member_id: int
    leader: int
    raft_applied_index: int


class EtcdClient(Protocol):
    def status(self, endpoint: str) -> _StatusLike: ...

    def member_list(self) -> list[Member]: ...

    def member_add_as_learner(self, peer_urls: list[str]) -> None: ...

    def member_promote(self, member_id: int) -> None: ...

    def member_remove(self, member_id: int) -> None: ...

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...


def _hostname(url: str) -> str:
    return urlsplit(url).hostname or ""


class ETCD:
    """A local etcd member and the operations that keep its cluster healthy."""

    def __init__(self, client: EtcdClient, name: str, address: str, data_dir: str, *,
                 server_cert: str = "", server_key: str = "",
                 peer_cert: str = "", peer_key: str = "",
                 server_ca: str = "", peer_ca: str = "") -> None:
        self.client = client
        self.name = name
        self.address = address
        self.data_dir = data_dir
        self.server_cert = server_cert
        self.server_key = server_key
        self.peer_cert = peer_cert
        self.peer_key = peer_key
        self.server_ca = server_ca
        self.peer_ca = peer_ca

    def peer_url(self) -> str:
        """Return the peer address of this member."""
        return f"https://{self.address}:2380"

    def client_url(self) -> str:
        """Return the client address of this member."""
        return f"https://{self.address}:2379"

    def test(self) -> None:
        """Raise ClusterMembershipError unless this server is a voting member."""
        status = self.client.status(ENDPOINT)
        if status.is_learner:
            raise ClusterMembershipError(
                "this server has not yet been promoted from learner to voting member"
            )
        found: list[str] = []
        for member in self.client.member_list():
            if self.name == member.name and self.peer_url() in member.peer_urls:
                return
            if member.peer_urls:
                found.append(f"{member.name}={member.peer_urls[0]}")
        raise ClusterMembershipError(
            "this server is a not a member of the etcd cluster. "
            f"Found [{' '.join(found)}], expect: {self.name}={self.address}"
        )

    def info(self) -> dict[str, Any]:
        """Return the member list served to joining servers.

        When the list cannot be read, only this member is reported.
        """
        try:
            members = self.client.member_list()
        except Exception as exc:  # any client failure falls back to ourselves
            log.debug("Failed to list etcd members for info: %s", exc)
            members = [Member(name=self.name, peer_urls=[self.peer_url()],
                              client_urls=[self.client_url()])]
        return {"members": [member.to_dict() for member in members]}

    def new_cluster_options(self) -> InitialOptions:
        """Return the options for starting a new single-member cluster."""
        return InitialOptions(
            advertise_peer_url=self.peer_url(),
            cluster=f"{self.name}={self.peer_url()}",
            state="new",
        )

    def join_options(self, members: Sequence[Member],
                     member_list_failed: bool = False) -> InitialOptions:
        """Return the options for joining an existing cluster.

        members is the cluster's member list; when member_list_failed is set it
        is the list served by the joined server, and this member is assumed to
        be added already. Otherwise this member is added as a learner if absent.
        """
        members = list(members)
        add = True
        if member_list_failed:
            log.error("Failed to get member list from etcd cluster. "
                      "Will assume this member is already added")
            members.append(Member(name=self.name, peer_urls=[self.peer_url()]))
            add = False

        cluster: list[str] = []
        for member in members:
            name = member.name
            for peer in member.peer_urls:
                host = _hostname(peer)
                # An uninitialized member has no name yet.
                if host == self.address and name in (self.name, ""):
                    add = False
                if not name and host == self.address:
                    name = self.name
                cluster.append(f"{name}={member.peer_urls[0]}")

        if add:
            log.info("Adding %s to etcd cluster %s", self.peer_url(), cluster)
            self.client.member_add_as_learner([self.peer_url()])
            cluster.append(f"{self.name}={self.peer_url()}")

        log.info("Starting etcd for cluster %s", cluster)
        return InitialOptions(cluster=",".join(cluster), state="existing")

    def etcd_config(self, force_new: bool, options: InitialOptions) -> ETCDConfig:
        """Return the embedded etcd configuration for this member."""
        return ETCDConfig(
            initial_options=options,
            name=self.name,
            force_new_cluster=force_new,
            listen_client_urls=self.client_url() + ",https://127.0.0.1:2379",
            listen_metrics_urls="http://127.0.0.1:2381",
            listen_peer_urls=self.peer_url(),
            advertise_client_urls=self.client_url(),
            data_dir=etcd_db_dir(self.data_dir),
            server_trust=ServerTrust(
                cert_file=self.server_cert,
                key_file=self.server_key,
                client_cert_auth=True,
                trusted_ca_file=self.server_ca,
            ),
            peer_trust=PeerTrust(
                cert_file=self.peer_cert,
                key_file=self.peer_key,
                client_cert_auth=True,
                trusted_ca_file=self.peer_ca,
            ),
            election_timeout=5000,
            heartbeat_interval=500,
            logger="zap",
            log_outputs=["stderr"],
        )

    def remove_peer(self, member_name: str, address: str) -> bool:
        """Remove the member with this name and peer address; return whether one was removed."""
        for member in self.client.member_list():
            if member.name != member_name:
                continue
            for peer in member.peer_urls:
                if _hostname(peer) != address:
                    continue
                if self.address == address:
                    raise ClusterMembershipError("node has been deleted from the cluster")
                log.info("Removing name=%s id=%d address=%s from etcd",
                         member.name, member.id, address)
                try:
                    self.client.member_remove(member.id)
                except LookupError:
                    return False
                return True
        return False

    def track_learner_progress(self, progress: LearnerProgress, member: Member,
                               now: datetime | None = None) -> str:
        """Promote a learner, or track its progress and evict it when stalled.

        Returns "promoted", "removed" or "tracking".
        """
        try:
            self.client.member_promote(member.id)
        except Exception as exc:  # promotion fails while the learner lags
            log.debug("Unable to promote learner %s: %s", member.name, exc)
        else:
            log.info("Promoted learner %s", member.name)
            return "promoted"

        if now is None:
            now = datetime.now(timezone.utc)

        if progress.name != member.name or progress.id != member.id:
            progress.id = member.id
            progress.name = member.name
            progress.raft_applied_index = 0
            progress.last_progress = now

        for endpoint in member.client_urls:
            try:
                status = self.client.status(endpoint)
            except Exception as exc:  # try the next client URL
                log.debug("Failed to get etcd status from learner %s at %s: %s",
                          member.name, endpoint, exc)
                continue
            if progress.raft_applied_index < status.raft_applied_index:
                log.debug("Learner %s has progressed from RaftAppliedIndex %d to %d",
                          progress.name, progress.raft_applied_index, status.raft_applied_index)
                progress.raft_applied_index = status.raft_applied_index
                progress.last_progress = now
            break

        stalled = None if progress.last_progress is None else now - progress.last_progress
        if progress.last_progress != now:
            log.warning("Learner %s stalled at RaftAppliedIndex=%d for %s",
                        progress.name, progress.raft_applied_index, stalled)

        if stalled is None or stalled > LEARNER_MAX_STALL_TIME:
            self.client.member_remove(member.id)
            log.warning("Removed learner %s from etcd cluster", member.name)
            return "removed"

        self.set_learner_progress(progress)
        return "tracking"

    def get_learner_progress(self) -> LearnerProgress:
        """Return the stored learner progress, or an empty record."""
        value = self.client.get(LEARNER_PROGRESS_KEY)
        if value is None:
            return LearnerProgress()
        return LearnerProgress.from_json(value)

    def set_learner_progress(self, progress: LearnerProgress) -> None:
        """Store the learner progress in etcd."""
        self.client.put(LEARNER_PROGRESS_KEY, progress.to_json())

    def manage_learners_once(self, now: datetime | None = None) -> str | None:
        """Run one learner management pass; only the leader acts.

        Returns the outcome for the first learner, or None when nothing was done.
        """
        try:
            status = self.client.status(ENDPOINT)
        except Exception as exc:  # retried on the next pass
            log.error("Failed to check local etcd status for learner management: %s", exc)
            return None
        if status.member_id != status.leader:
            return None
        try:
            progress = self.get_learner_progress()
        except Exception as exc:  # retried on the next pass
            log.error("Failed to get recorded learner progress from etcd: %s", exc)
            return None
        try:
            members: Iterable[Member] = self.client.member_list()
        except Exception as exc:  # retried on the next pass
            log.error("Failed to get etcd members for learner management: %s", exc)
            return None
        for member in members:
            if member.is_learner:
                try:
                    return self.track_learner_progress(progress, member, now)
                except Exception as exc:  # retried on the next pass
                    log.error("Failed to track learner progress towards promotion: %s", exc)
                    return None
        return None