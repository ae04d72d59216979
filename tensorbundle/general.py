import contextlib
import time

import torch


def determine_device(device_arg):
    """Determine the best device to use for inference"""
    if device_arg is None or device_arg == "auto":
        if torch.cuda.is_available():
            return "cuda"
        else:
            return "cpu"
    return device_arg


class Profiler(contextlib.ContextDecorator):
    """
    Performance profiler for accurate timing measurements.

    Synchronizes CUDA before reading the clock so GPU work is included in the
    measurement.

    Example:
        profiler = Profiler()
        with profiler:
            model.run(batch)
        print(f"Inference time: {profiler.elapsed_time * 1000:.2f} ms")
    """

    def __init__(self, accumulated_time=0.0):
        self.accumulated_time = accumulated_time
        self.elapsed_time = 0.0  # Time for the last measurement
        self.cuda_available = torch.cuda.is_available()
        self._start_time = 0.0

    def __enter__(self):
        self._start_time = self._get_precise_time()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.elapsed_time = self._get_precise_time() - self._start_time
        self.accumulated_time += self.elapsed_time

    def _get_precise_time(self):
        if self.cuda_available:
            torch.cuda.synchronize()
        return time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_time * 1000

    def reset(self):
        """Reset accumulated time counter for a new measurement session."""
        self.accumulated_time = 0.0
        self.elapsed_time = 0.0

    def get_fps(self, num_samples):
        """
        Calculate throughput in samples per second.

        Args:
            num_samples (int): Number of samples processed

        Returns:
            float: FPS based on accumulated time
        """
        if self.accumulated_time > 0:
            return num_samples / self.accumulated_time
        return 0.0

    def get_avg_time_ms(self, num_operations):
        """Average time per operation in milliseconds."""
        if num_operations > 0:
            return (self.accumulated_time / num_operations) * 1000
        return 0.0
