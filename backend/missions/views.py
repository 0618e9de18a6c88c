from __future__ import annotations

from rest_framework import status
from rest_framework.generics import GenericAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from config.pagination import EnvelopePagination
from missions.correlator import correlate
from missions.models import MissionHistory, MissionQueueItem, QueueStatus
from missions.serializers import (
    CancelSerializer,
    EnqueueSerializer,
    MissionHistorySerializer,
    MissionQueueItemSerializer,
    QueueItemUpdateSerializer,
)
from missions.use_cases import admission, manual_waypoints
from missions.zones import load_zones


def _filter_items(qs, params):
    status_filter = params.get("status")
    if status_filter:
        qs = qs.filter(status__in=[s for s in status_filter.split(",") if s])
    area_key = params.get("area_key")
    if area_key:
        qs = qs.filter(area_key=area_key)
    return qs


class QueueView(GenericAPIView):
    pagination_class = EnvelopePagination

    def get(self, request):
        """List queue items in serving order (priority desc, then age)."""
        qs = _filter_items(MissionQueueItem.objects.all(), request.query_params).order_by(
            "-priority", "created_at", "pk"
        )
        page = self.paginate_queryset(qs)
        if page is None:
            page = list(qs)
        return self.get_paginated_response(MissionQueueItemSerializer(page, many=True).data)

    def post(self, request):
        """Admit a mission: dispatch now or queue it."""
        serializer = EnqueueSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = admission.enqueue(dict(serializer.validated_data))
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)


class QueueItemDetailView(APIView):
    def get(self, request, queue_id: int):
        item = admission.get_item(queue_id)
        return Response(MissionQueueItemSerializer(item).data, status=status.HTTP_200_OK)

    def patch(self, request, queue_id: int):
        """Edit priority or steps of a Waiting item."""
        serializer = QueueItemUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        steps = data.get("steps")
        item = admission.update_waiting(
            queue_id,
            priority=data.get("priority"),
            steps=[dict(step) for step in steps] if steps is not None else None,
        )
        return Response(MissionQueueItemSerializer(item).data, status=status.HTTP_200_OK)


class QueueItemCancelView(APIView):
    def post(self, request, queue_id: int):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = admission.cancel(queue_id, **serializer.validated_data)
        return Response(MissionQueueItemSerializer(item).data, status=status.HTTP_200_OK)


class QueueProcessView(APIView):
    def post(self, request):
        """Fill free slots now instead of waiting for the periodic pass."""
        dispatched = admission.process_queue()
        return Response({"dispatched": dispatched}, status=status.HTTP_200_OK)


class QueueStatsView(APIView):
    def get(self, request):
        return Response(admission.get_stats(request.query_params.get("area_key") or None), status=status.HTTP_200_OK)


class QueueItemProgressView(APIView):
    def get(self, request, queue_id: int):
        """Step progress from the last reported robot position."""
        item = admission.get_item(queue_id)
        match = correlate(item.robot_node_code, item.steps, load_zones(item.area_key))
        payload = match.as_dict()
        payload.update(
            {
                "queue_id": item.pk,
                "mission_code": item.mission_code,
                "status": item.status,
                "robot_id": item.assigned_robot_id,
                "battery_level": item.robot_battery_level,
                "waiting_for_resume": item.waiting_for_resume,
                "current_waypoint": item.current_waypoint,
            }
        )
        if item.status == QueueStatus.COMPLETE:
            payload["progress_percentage"] = 100.0
        return Response(payload, status=status.HTTP_200_OK)


class WaitingForResumeView(APIView):
    def get(self, request):
        return Response(manual_waypoints.list_waiting_for_resume(), status=status.HTTP_200_OK)


class MissionResumeView(APIView):
    def post(self, request, mission_code: str):
        result = manual_waypoints.resume(mission_code)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class MissionHistoryView(GenericAPIView):
    pagination_class = EnvelopePagination

    def get(self, request):
        qs = MissionHistory.objects.all()
        status_filter = request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        area_key = request.query_params.get("area_key")
        if area_key:
            qs = qs.filter(area_key=area_key)
        mission_code = request.query_params.get("mission_code")
        if mission_code:
            qs = qs.filter(mission_code=mission_code)

        page = self.paginate_queryset(qs)
        if page is None:
            page = list(qs)
        return self.get_paginated_response(MissionHistorySerializer(page, many=True).data)
