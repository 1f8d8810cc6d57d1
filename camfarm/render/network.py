#!/usr/bin/env python3
# Copyright 2004-present Facebook. All Rights Reserved.

# This source code is licensed under the BSD-style license found in the
# LICENSE file in the root directory of this source tree.

"""Network endpoints of the render farm master.

Two ZeroMQ endpoints are served, each by its own thread:

    - CommandChannel binds a ROUTER socket. Workers ask it for the scene checksum, the
      scene file and frames to render. The ROUTER prefixes every request with the
      peer identity, which is echoed back so the reply reaches the right worker.
    - ImageChannel binds a REP socket. Workers push each rendered frame to it as a
      (frame id, encoded image) pair and get "ok" back. REP enforces strict
      alternation, so uploads are serialized.

Any error raised while serving is fatal: the channel logs it and hands it to its fatal
handler, which terminates the process by default. Context termination is a clean exit.

Example:
    Serving both channels for a coordinator:

        >>> context = zmq.Context()
        >>> commands = CommandChannel(coordinator, context=context)
        >>> images = ImageChannel(on_received=coordinator.record_image, context=context)
        >>> threads = [start_channel(commands), start_channel(images)]
"""

import os
import threading
import uuid
from collections import namedtuple
from enum import Enum

import zmq
from absl import logging

from camfarm.render import config

Request = namedtuple("Request", ["identity", "peer_id", "command", "payload"])


class ChannelError(Exception):
    """Raised when a peer sends a frame sequence the protocol does not allow."""


class Command(Enum):
    """Commands understood by the command channel.

    Any string that is not one of the named commands is a checksum request.
    """

    GET_BSZ = "getBsz"
    READY_IMAGE = "readyImage"
    GET_FRAGMENT = "getFragment"
    CHECKSUM = "checksum"

    @classmethod
    def _missing_(cls, value):
        return cls.CHECKSUM


def peer_name(identity):
    """Printable ROUTER identity: a UUID for 16-byte identities, hex otherwise."""
    if len(identity) == 16:
        return str(uuid.UUID(bytes=identity))
    return identity.hex()


def parse_request(frames):
    """Splits a ROUTER multipart message into a Request.

    Both DEALER peers ([identity, command, ...]) and REQ peers
    ([identity, b"", command, ...]) are accepted.

    Args:
        frames (list[bytes]): Frames as received by the ROUTER socket.

    Returns:
        Request: The identity, printable peer id, command and remaining frames.

    Raises:
        ChannelError: If no command frame follows the identity.
    """
    if len(frames) < 2:
        raise ChannelError(
            f"Expected identity and command, got {len(frames)} frame(s)"
        )
    identity, body = frames[0], frames[1:]
    if len(body) > 1 and body[0] == b"":
        body = body[1:]
    try:
        command = body[0].decode("utf-8")
    except UnicodeDecodeError as e:
        raise ChannelError(f"Command frame is not utf-8: {e}")
    return Request(identity, peer_name(identity), Command(command), body[1:])


def _encode(frame):
    return frame if isinstance(frame, bytes) else str(frame).encode("utf-8")


def terminate_process(exc):
    # Channels run on background threads, sys.exit would only end the thread
    os._exit(1)


class Channel:

    """Common socket lifetime and failure handling of the farm endpoints.

    Attributes:
        bind_address (str): Interface the socket binds on.
        context (zmq.Context): Context the socket is created in.
        fatal_handler (func: (Exception) -> void): Called once with a fatal error.
        port (int): Bound port. 0 binds to a random free port, updated after bind().
        socket (zmq.Socket): Bound socket, None before bind().
    """

    name = "Channel"
    socket_type = None

    def __init__(
        self, port, bind_address=config.LOCALHOST, context=None, fatal_handler=None
    ):
        self.port = port
        self.bind_address = bind_address
        self.context = context or zmq.Context.instance()
        self.fatal_handler = fatal_handler or terminate_process
        self.socket = None

    def bind(self):
        """Creates and binds the socket. Safe to call once before serve_forever()."""
        if self.socket is not None:
            return self.port
        self.socket = self.context.socket(self.socket_type)
        self.socket.setsockopt(zmq.LINGER, 0)
        if self.port == 0:
            self.port = self.socket.bind_to_random_port(f"tcp://{self.bind_address}")
        else:
            self.socket.bind(config.endpoint(self.bind_address, self.port))
        logging.info(f"{self.name} bound on {self.bind_address}:{self.port}")
        return self.port

    def should_serve(self):
        return True

    def serve_once(self):
        raise NotImplementedError

    def serve_forever(self):
        """Serves requests until the context is terminated. Any other error is fatal."""
        try:
            self.bind()
            while self.should_serve():
                self.serve_once()
        except zmq.ContextTerminated:
            logging.info(f"{self.name} shutting down")
        except Exception as e:
            logging.error(f"Exception in {self.name}: {e}")
            self.fatal_handler(e)
        finally:
            if self.socket is not None:
                self.socket.close(linger=0)


class CommandChannel(Channel):

    """ROUTER endpoint that hands out scene data and frames to workers.

    Requests are only answered while farm mode is on. A request that arrives after
    farm mode is turned off is held until it is turned back on.

    Attributes:
        coordinator (DispatchCoordinator): Owner of all dispatch state.
        handlers (dict[Command, func: (Request) -> list[bytes]]): Reply builders.
    """

    name = "CommandChannel"
    socket_type = zmq.ROUTER

    def __init__(self, coordinator, port=config.COMMAND_PORT, **kwargs):
        super().__init__(port, **kwargs)
        self.coordinator = coordinator
        self.handlers = {
            Command.GET_BSZ: self.handle_get_bsz,
            Command.READY_IMAGE: self.handle_ready_image,
            Command.GET_FRAGMENT: self.handle_get_fragment,
            Command.CHECKSUM: self.handle_checksum,
        }

    def should_serve(self):
        return self.coordinator.wait_until_enabled()

    def handle_get_bsz(self, request):
        if self.coordinator.is_exhausted():
            return [config.STANDBY]
        return [config.SCENE_HEADER, self.coordinator.read_scene()]

    def handle_ready_image(self, request):
        return [str(self.coordinator.current_frame)]

    def handle_get_fragment(self, request):
        fragment = self.coordinator.next_fragment(request.peer_id)
        if fragment is None:
            return [config.STANDBY]
        logging.info(f"getFragment {fragment.frame} -> {request.peer_id}")
        return [
            str(fragment.frame),
            fragment.transform_string,
            f"{config.TRAILER_PREFIX}{fragment.frame}",
        ]

    def handle_checksum(self, request):
        if self.coordinator.is_exhausted():
            return [config.STANDBY]
        return [self.coordinator.scene_checksum()]

    def handle(self, request):
        """Builds the payload frames replying to a request.

        Args:
            request (Request): Parsed request.

        Returns:
            list[bytes]: Payload frames, without the identity envelope.
        """
        return [_encode(frame) for frame in self.handlers[request.command](request)]

    def serve_once(self):
        request = parse_request(self.socket.recv_multipart())
        # farm mode may have been turned off while blocked in recv
        if not self.coordinator.wait_until_enabled():
            return
        logging.debug(
            f"Worker::{request.peer_id} {request.command.value} "
            f"(frame {self.coordinator.current_frame})"
        )
        payload = self.handle(request)
        self.socket.send_multipart([request.identity, b""] + payload)


class ImageChannel(Channel):

    """REP endpoint that stores the images workers upload.

    Attributes:
        on_received (func: (str) -> void): Called with the frame id after each upload.
        output_dir (str): Directory images are written to.
    """

    name = "ImageChannel"
    socket_type = zmq.REP

    def __init__(
        self, port=config.IMAGE_PORT, output_dir=".", on_received=None, **kwargs
    ):
        super().__init__(port, **kwargs)
        self.output_dir = output_dir
        self.on_received = on_received

    def image_path(self, identifier):
        if not identifier or os.path.basename(identifier) != identifier:
            raise ChannelError(f"Invalid frame identifier {identifier!r}")
        return os.path.join(self.output_dir, identifier + config.IMAGE_EXTENSION)

    def serve_once(self):
        frames = self.socket.recv_multipart()
        if len(frames) != 2:
            raise ChannelError(
                f"Expected frame id and image, got {len(frames)} frame(s)"
            )
        try:
            identifier = frames[0].decode("utf-8")
        except UnicodeDecodeError as e:
            raise ChannelError(f"Frame id is not utf-8: {e}")
        path = self.image_path(identifier)
        with open(path, "wb") as f:
            f.write(frames[1])
        self.socket.send_string(config.IMAGE_ACK)
        logging.info(f"Received image {identifier} ({len(frames[1])} bytes)")

        if self.on_received is not None:
            self.on_received(identifier)


def start_channel(channel):
    """Binds a channel on the calling thread and serves it on a daemon thread.

    Args:
        channel (Channel): Channel to serve.

    Returns:
        threading.Thread: The started serving thread.
    """
    channel.bind()
    thread = threading.Thread(
        target=channel.serve_forever, name=channel.name, daemon=True
    )
    thread.start()
    return thread
