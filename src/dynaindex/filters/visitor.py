#    Copyright 2025 FAO
# 
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
# 
#        http://www.apache.org/licenses/LICENSE-2.0
# 
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
# 
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

from abc import ABC, abstractmethod

from dynaindex.filters import ast


class FilterVisitor(ABC):
    """
    Visitor over the filter AST.

    Every node type has an abstract `visit_*` method, so a subclass that forgets a
    node type cannot be instantiated.
    """

    def visit(self, f: ast.Filter):
        return f.accept(self)

    @abstractmethod
    def visit_include(self, f: ast.Include): ...

    @abstractmethod
    def visit_exclude(self, f: ast.Exclude): ...

    @abstractmethod
    def visit_and(self, f: ast.And): ...

    @abstractmethod
    def visit_or(self, f: ast.Or): ...

    @abstractmethod
    def visit_not(self, f: ast.Not): ...

    @abstractmethod
    def visit_id_in(self, f: ast.IdIn): ...

    @abstractmethod
    def visit_comparison(self, f: ast.Comparison): ...

    @abstractmethod
    def visit_between(self, f: ast.Between): ...

    @abstractmethod
    def visit_in(self, f: ast.In): ...

    @abstractmethod
    def visit_like(self, f: ast.Like): ...

    @abstractmethod
    def visit_is_null(self, f: ast.IsNull): ...

    @abstractmethod
    def visit_bbox(self, f: ast.BBox): ...

    @abstractmethod
    def visit_spatial(self, f: ast.Spatial): ...

    @abstractmethod
    def visit_temporal(self, f: ast.Temporal): ...


class AttributeNamesVisitor(FilterVisitor):
    """Collects the attribute names referenced by a filter."""

    def visit_include(self, f):
        return set()

    visit_exclude = visit_include
    visit_id_in = visit_include

    def visit_and(self, f):
        names = set()
        for child in f.children:
            names |= self.visit(child)
        return names

    visit_or = visit_and

    def visit_not(self, f):
        return self.visit(f.child)

    def _attribute(self, f):
        return {f.attribute}

    visit_comparison = _attribute
    visit_between = _attribute
    visit_in = _attribute
    visit_like = _attribute
    visit_is_null = _attribute
    visit_bbox = _attribute
    visit_spatial = _attribute
    visit_temporal = _attribute


def attribute_names(f: ast.Filter) -> set:
    return AttributeNamesVisitor().visit(f)
