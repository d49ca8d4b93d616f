"""
Property processors

Processors are applied per property, in the order they're declared in the object template.
- pre-processing (applied to the request payload): processors may rewrite values and remove properties
- post-processing (applied to the result): processors may only rewrite values
"""
import copy
import datetime
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import graphgate

ALL_METHODS = "*"
TAG_RE = re.compile(r"<[^>]*>")

_processors: Dict[str, "Processor"] = {}


class Processor:
    """
    Processor base class, subclasses implement `process`
    """

    name = None
    removes = False  # whether the processor may remove properties

    def process(self, property_name: str, value: Any, manager: "ProcessorManager") -> Any:
        """
        :param property_name: name of the processed property
        :param value: property value
        :param manager: the manager running the processor, call `manager.remove_property` to drop the property
        :return: the processed value
        """
        return value


class TrimProcessor(Processor):
    name = "trim"

    def process(self, property_name, value, manager):
        return value.strip() if isinstance(value, str) else value


class StripTagsProcessor(Processor):
    name = "strip_tags"

    def process(self, property_name, value, manager):
        return TAG_RE.sub("", value) if isinstance(value, str) else value


class LowercaseProcessor(Processor):
    name = "lowercase"

    def process(self, property_name, value, manager):
        return value.lower() if isinstance(value, str) else value


class ReadonlyProcessor(Processor):
    """
    Refuses client supplied values
    """

    name = "readonly"
    removes = True

    def process(self, property_name, value, manager):
        manager.remove_property(property_name, f"{property_name} is read only")
        return value


class IsoformatProcessor(Processor):
    name = "isoformat"

    def process(self, property_name, value, manager):
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return value.isoformat()
        return value


def register_processor(processor: Processor) -> Processor:
    """
    Make a processor available to the object templates, the processor name must be unique
    """
    if isinstance(processor, type):
        processor = processor()
    if not processor.name:
        raise ValueError(f"Processor {processor} has no name")
    if _processors.get(processor.name, processor) is not processor:
        graphgate.log.warning(f"Replacing processor '{processor.name}'")
    _processors[processor.name] = processor
    return processor


def get_processor(name: str) -> Optional[Processor]:
    return _processors.get(name)


for _builtin in (TrimProcessor, StripTagsProcessor, LowercaseProcessor, ReadonlyProcessor, IsoformatProcessor):
    register_processor(_builtin)


class ProcessorReport:
    """
    Removed properties and the reasons the processors gave for removing them
    """

    def __init__(self) -> None:
        self.removed: List[str] = []
        self.messages: List[str] = []

    def add(self, property_name: str, message: str) -> None:
        if property_name not in self.removed:
            self.removed.append(property_name)
        if message:
            self.messages.append(message)

    @property
    def message(self) -> str:
        return "; ".join(self.messages)

    def __bool__(self) -> bool:
        return bool(self.removed)


class ProcessorManager:
    """
    Runs the processors declared for each property
    """

    def __init__(self) -> None:
        self.report = ProcessorReport()
        self._removal_allowed = False

    @staticmethod
    def method_processors(method: str, by_method: Mapping[str, Sequence[str]]) -> Tuple[Processor, ...]:
        """
        :param by_method: {METHOD: processor names}, "*" applies to every method without its own entry
        :return: the processors for `method`
        """
        names = by_method.get(method, by_method.get(ALL_METHODS, ()))
        result = []
        for name in names:
            processor = get_processor(name)
            if processor is None:
                graphgate.log.warning(f"Unknown processor '{name}'")
                continue
            result.append(processor)
        return tuple(result)

    def remove_property(self, property_name: str, message: str = "") -> None:
        if not self._removal_allowed:
            graphgate.log.warning(f"Processor tried to remove '{property_name}' during post-processing")
            return
        self.report.add(property_name, message)

    @property
    def removed_properties(self) -> List[str]:
        return list(self.report.removed)

    def apply_processors_to_array(
        self, method: str, processors: Mapping[str, Mapping[str, Sequence[str]]], valid_properties: Sequence[str], payload: Mapping
    ) -> Tuple[List[str], Dict]:
        """
        Pre-processing: run the processors of every payload property

        :param method: HTTP method
        :param processors: {property: {METHOD: processor names}}
        :param valid_properties: properties the viewer may access
        :param payload: request payload
        :return: (valid properties, payload) without the removed properties
        """
        self._removal_allowed = True
        valid_properties = list(valid_properties)
        result = dict(payload)
        for property_name, value in payload.items():
            for processor in self.method_processors(method, processors.get(property_name, {})):
                before = len(self.report.removed)
                value = processor.process(property_name, value, self)
                if len(self.report.removed) > before:
                    graphgate.log.debug(f"{processor.name} removed '{property_name}'")
            if property_name in self.report.removed:
                result.pop(property_name, None)
                if property_name in valid_properties:
                    valid_properties.remove(property_name)
            else:
                result[property_name] = value
        self._removal_allowed = False
        return valid_properties, result

    def apply_processors_to_object(
        self, method: str, processors: Mapping[str, Mapping[str, Sequence[str]]], valid_properties: Sequence[str], data: Any
    ) -> Any:
        """
        Post-processing: same traversal as `apply_processors_to_array`, value-transforming processors only

        :param data: object dict or list of object dicts
        :return: processed data
        """
        if isinstance(data, list):
            return [self.apply_processors_to_object(method, processors, valid_properties, item) for item in data]
        if not isinstance(data, Mapping):
            return data
        self._removal_allowed = False
        result = copy.copy(data) if isinstance(data, dict) else dict(data)
        for property_name, value in data.items():
            if property_name not in valid_properties:
                continue
            for processor in self.method_processors(method, processors.get(property_name, {})):
                if processor.removes:
                    continue
                value = processor.process(property_name, value, self)
            result[property_name] = value
        return result
