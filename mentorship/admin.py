from django.contrib import admin, messages
from django.contrib.auth import get_user_model
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import Connection, Message, Notification, Session, UserProfile
from .permissions import ROLE_MENTOR

User = get_user_model()


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    extra = 0
    max_num = 1


class AppUserAdmin(DjangoUserAdmin):
    inlines = (UserProfileInline,)
    list_display = DjangoUserAdmin.list_display + ('profile_role', 'profile_approved')
    actions = ('approve_mentors',)

    @admin.display(description='Role')
    def profile_role(self, obj):
        return getattr(getattr(obj, 'userprofile', None), 'role', '-')

    @admin.display(description='Approved', boolean=True)
    def profile_approved(self, obj):
        return getattr(getattr(obj, 'userprofile', None), 'is_approved', False)

    @admin.action(description='Approve selected mentors')
    def approve_mentors(self, request, queryset):
        updated_count = UserProfile.objects.filter(
            user__in=queryset, role=ROLE_MENTOR, is_approved=False
        ).update(is_approved=True)
        self.message_user(
            request,
            f'{updated_count} mentor(s) approved.',
            level=messages.SUCCESS,
        )


try:
    admin.site.unregister(User)
except admin.sites.NotRegistered:
    pass
admin.site.register(User, AppUserAdmin)


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'role', 'is_approved', 'location', 'created_at')
    list_filter = ('role', 'is_approved')
    search_fields = ('user__email', 'user__first_name', 'user__last_name')


class SessionInline(admin.TabularInline):
    model = Session
    extra = 0
    fields = ('title', 'start_time', 'end_time', 'status')
    show_change_link = True


@admin.register(Connection)
class ConnectionAdmin(admin.ModelAdmin):
    list_display = ('id', 'mentee', 'mentor', 'status', 'created_at', 'updated_at')
    list_filter = ('status',)
    search_fields = ('mentor__email', 'mentee__email', 'mentor__last_name', 'mentee__last_name')
    readonly_fields = ('created_at', 'updated_at')
    inlines = (SessionInline,)


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'connection', 'start_time', 'end_time', 'status', 'created_by')
    list_filter = ('status',)
    search_fields = ('title', 'connection__mentor__email', 'connection__mentee__email')
    date_hierarchy = 'start_time'
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'type', 'title', 'read', 'created_at')
    list_filter = ('type', 'read')
    search_fields = ('user__email', 'title')


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ('id', 'connection', 'sender', 'recipient', 'read', 'created_at')
    list_filter = ('read',)
    search_fields = ('sender__email', 'recipient__email', 'content')
