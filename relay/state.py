from dataclasses import dataclass, field
from typing import Dict, List
import socket
from threading import Lock

from relay.protocol import send_frame

@dataclass(eq=False)   # compared by identity; one instance per connection
class Subscriber:
    name: str              # peer address, for logs only
    sock: socket.socket    # socket connected to the subscriber
    send_lock: Lock = field(default_factory=Lock)   # serializes writes from different handler threads

    def send(self, frame: dict) -> None:
        with self.send_lock:
            send_frame(self.sock, frame)

class RelayState:
    # This class tracks which connections listen on which channel
    def __init__(self):
        self.lock = Lock()  # guards channels
        self.channels: Dict[str, List[Subscriber]] = {}

    def join(self, channel: str, sub: Subscriber) -> bool:
        ''' This function subscribes a connection to a channel; False if it already was '''
        with self.lock:
            subs = self.channels.setdefault(channel, [])
            if sub in subs:
                return False
            subs.append(sub)
            return True

    def leave(self, sub: Subscriber) -> None:
        ''' This function removes a connection from every channel '''
        with self.lock:
            for channel in list(self.channels):
                subs = [s for s in self.channels[channel] if s is not sub]
                if subs:
                    self.channels[channel] = subs
                else:
                    del self.channels[channel]

    def subscribers(self, channel: str) -> List[Subscriber]:
        ''' This function returns a snapshot of the subscribers of a channel '''
        with self.lock:
            return list(self.channels.get(channel, ()))

    def channel_names(self) -> List[str]:
        with self.lock:
            return list(self.channels.keys())
