from recap.services.capture.base import CaptureDevice, CaptureDeviceError, RawAudioHandle


def create_capture_device(config, recordings_dir: str) -> CaptureDevice:
    """Build the capture strategy named by ``config.capture_strategy``.

    Imported lazily so environments without PortAudio can still import the
    rest of the pipeline.
    """
    from recap.services.capture.sounddevice_devices import SingleFileDevice, StreamingBufferDevice

    if config.capture_strategy == "streaming":
        return StreamingBufferDevice(
            device_index=config.device_index,
            samplerate=config.samplerate,
            channels=config.channels,
        )
    return SingleFileDevice(
        recordings_dir,
        device_index=config.device_index,
        samplerate=config.samplerate,
        channels=config.channels,
    )


__all__ = [
    "CaptureDevice",
    "CaptureDeviceError",
    "RawAudioHandle",
    "create_capture_device",
]
