from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.generics import GenericAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from config.pagination import EnvelopePagination
from triggers.models import ScheduleDefinition
from triggers.serializers import ScheduleDefinitionSerializer, ScheduleRunLogSerializer
from triggers.use_cases import engine

_TIMING_FIELDS = ("trigger_type", "cron_expression", "timezone", "run_at", "enabled")


class SchedulesView(APIView):
    def get(self, request):
        qs = ScheduleDefinition.objects.all()
        enabled = request.query_params.get("enabled")
        if enabled is not None:
            qs = qs.filter(enabled=enabled.lower() in {"1", "true", "yes"})
        return Response(ScheduleDefinitionSerializer(qs, many=True).data, status=status.HTTP_200_OK)

    def post(self, request):
        """Create a schedule; its first occurrence is computed immediately."""
        serializer = ScheduleDefinitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        schedule = engine.refresh_next_run(serializer.save())
        return Response(ScheduleDefinitionSerializer(schedule).data, status=status.HTTP_201_CREATED)


class ScheduleDetailView(APIView):
    def get(self, request, schedule_id: int):
        schedule = get_object_or_404(ScheduleDefinition, pk=schedule_id)
        return Response(ScheduleDefinitionSerializer(schedule).data, status=status.HTTP_200_OK)

    def patch(self, request, schedule_id: int):
        """Edit a schedule; the next occurrence moves only when its timing changed."""
        schedule = get_object_or_404(ScheduleDefinition, pk=schedule_id)
        before = {name: getattr(schedule, name) for name in _TIMING_FIELDS}
        serializer = ScheduleDefinitionSerializer(schedule, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        schedule = serializer.save()
        if any(getattr(schedule, name) != value for name, value in before.items()):
            schedule = engine.refresh_next_run(schedule)
        return Response(ScheduleDefinitionSerializer(schedule).data, status=status.HTTP_200_OK)


class ScheduleRunView(APIView):
    def post(self, request, schedule_id: int):
        """Fire the schedule now; its regular next occurrence is unchanged."""
        outcome = engine.run_now(schedule_id)
        return Response(outcome.as_dict(), status=status.HTTP_200_OK)


class ScheduleRunLogsView(GenericAPIView):
    pagination_class = EnvelopePagination

    def get(self, request, schedule_id: int):
        schedule = get_object_or_404(ScheduleDefinition, pk=schedule_id)
        qs = schedule.run_logs.all()
        status_filter = request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        page = self.paginate_queryset(qs)
        if page is None:
            page = list(qs)
        return self.get_paginated_response(ScheduleRunLogSerializer(page, many=True).data)
