import os
from enum import Enum


class ModelType(Enum):
    PYTORCH = "pytorch"
    TORCHSCRIPT = "torchscript"
    ONNX = "onnx"
    OPENVINO = "openvino"

    @classmethod
    def names(cls):
        return [member.value for member in cls]

    @classmethod
    def from_name(cls, name):
        """Look up a backend by the name used in ``model.json``."""
        try:
            return cls(str(name).lower())
        except ValueError:
            raise ValueError(
                f"Unsupported backend: {name}. Supported: {cls.names()}"
            ) from None

    @classmethod
    def from_extension(cls, model_path):
        """Determine model type from file extension or directory structure"""

        # Check if it's a directory (for OpenVINO)
        if os.path.isdir(model_path):
            for file in os.listdir(model_path):
                if file.endswith(".xml"):
                    return cls.OPENVINO
            raise ValueError(
                f"Directory {model_path} doesn't contain OpenVINO .xml files"
            )

        extension_map = {
            ".pt": cls.PYTORCH,
            ".pth": cls.PYTORCH,
            ".pts": cls.TORCHSCRIPT,
            ".torchscript": cls.TORCHSCRIPT,
            ".onnx": cls.ONNX,
            ".xml": cls.OPENVINO,
            ".bin": cls.OPENVINO,
        }

        ext = os.path.splitext(model_path)[1].lower()
        model_type = extension_map.get(ext)

        if model_type is None:
            raise ValueError(
                f"Unsupported model format: {ext}. Supported: {list(extension_map.keys())} or OpenVINO directories"
            )

        return model_type
